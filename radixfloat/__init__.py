from .radixfloat import *
from .radixfloat import __all__
