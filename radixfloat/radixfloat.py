#
# Exact rounding semantics of fixed-point, floating-point and IEEE-style formats of any
# even radix.
#
# (c) The radixfloat authors 2026.  All rights reserved.
#

import copy
import logging
import numbers
import threading
from collections import namedtuple
from decimal import Decimal
from enum import Enum, IntFlag
from fractions import Fraction

import attr

__all__ = ('Context', 'DefaultContext', 'get_context', 'set_context', 'local_context',
           'Flags', 'RoundingMode', 'Classification', 'InvalidFormatError',
           'FixedFormat', 'FloatFormat', 'IEEEFormat', 'Normalized',
           'validate', 'to_fixed_view', 'to_float_view', 'exact',
           'radix_power', 'round_fixed', 'finite_boundary', 'normalize',
           'round_float', 'round_ieee', 'round_value', 'rounding_error',
           'max_finite', 'threshold', 'epsilon', 'min_normal', 'min_subnormal',
           'exponent_of', 'ulp', 'classify', 'is_representable',
           'is_positive_infinity', 'is_negative_infinity', 'next_up', 'next_down',
           'TO_NEAREST', 'TO_ZERO', 'TO_POSITIVE', 'TO_NEGATIVE',
           'IEEEhalf', 'IEEEsingle', 'IEEEdouble', 'IEEEquad',
           'Decimal32', 'Decimal64', 'Decimal128')


logger = logging.getLogger(__name__)


class RoundingMode(Enum):
    '''The rounding-direction attributes.  Values are the names of the equivalent Python
    decimal module constants.'''
    TO_NEAREST  = 'ROUND_HALF_EVEN'     # To nearest with ties towards even
    TO_ZERO     = 'ROUND_DOWN'          # Towards zero
    TO_POSITIVE = 'ROUND_CEILING'       # Towards +infinity
    TO_NEGATIVE = 'ROUND_FLOOR'         # Towards -infinity

    def __repr__(self):
        return f'RoundingMode.{self.name}'


TO_NEAREST = RoundingMode.TO_NEAREST
TO_ZERO = RoundingMode.TO_ZERO
TO_POSITIVE = RoundingMode.TO_POSITIVE
TO_NEGATIVE = RoundingMode.TO_NEGATIVE


class Classification(Enum):
    '''Which region of an IEEE format a real value falls in.'''
    FIXED = 'fixed'
    FLOAT_NORMAL = 'float-normal'
    POSITIVE_INFINITY = '+infinity'
    NEGATIVE_INFINITY = '-infinity'


# Status flags raised by IEEEFormat.round()
class Flags(IntFlag):
    OVERFLOW    = 0x04
    UNDERFLOW   = 0x08
    INEXACT     = 0x10


Normalized = namedtuple('Normalized', 'exponent digit residual')


class InvalidFormatError(ValueError):
    '''Raised when format parameters violate a format invariant: the radix must be even and
    greater than one, the precision greater than one, and e_max no less than e_min.'''


#
# Format descriptors
#

def _check_int(instance, attribute, value):
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f'{attribute.name} must be an integer, not {type(value).__name__}')


def _check_radix(instance, attribute, value):
    _check_int(instance, attribute, value)
    if value <= 1:
        raise InvalidFormatError(f'radix must be greater than 1: {value}')
    # Ties to even rely on an even radix
    if value % 2:
        raise InvalidFormatError(f'radix must be even: {value}')


def _check_precision(instance, attribute, value):
    _check_int(instance, attribute, value)
    if value <= 1:
        raise InvalidFormatError(f'precision must be greater than 1: {value}')


@attr.s(slots=True, frozen=True, repr=False)
class FixedFormat:
    '''A fixed-point format.  Its finite values are k * radix^(e_min - precision + 1) for
    integers k with |k| < radix^precision.'''

    radix = attr.ib(validator=_check_radix)
    precision = attr.ib(validator=_check_precision)
    e_min = attr.ib(validator=_check_int)

    def __repr__(self):
        return f'FixedFormat(radix={self.radix}, precision={self.precision}, e_min={self.e_min})'

    @property
    def quantum(self):
        '''The spacing of the grid.'''
        return radix_power(self.radix, self.e_min - self.precision + 1)

    def finite_boundary(self):
        return finite_boundary(self)

    def round(self, value, rounding=TO_NEAREST):
        return round_fixed(self, rounding, value)

    def epsilon(self):
        return epsilon(self)


@attr.s(slots=True, frozen=True, repr=False)
class FloatFormat:
    '''A floating-point format with unbounded exponent.  Its values are
    m * radix^(e - precision + 1) for integers e and 0 < m < radix^precision.'''

    radix = attr.ib(validator=_check_radix)
    precision = attr.ib(validator=_check_precision)

    def __repr__(self):
        return f'FloatFormat(radix={self.radix}, precision={self.precision})'

    def normalize(self, value):
        return normalize(self, value)

    def round(self, value, rounding=TO_NEAREST):
        return round_float(self, rounding, value)

    def epsilon(self):
        return epsilon(self)


@attr.s(slots=True, frozen=True, repr=False)
class IEEEFormat:
    '''An IEEE-style format: a fixed-point (subnormal) regime at e_min composed with a
    floating-point (normal) regime whose exponents lie in [e_min, e_max].

    The largest finite magnitude is (radix^precision - 1) * radix^(e_max - precision + 1).
    Magnitudes at or beyond one grid step further, radix^(e_max + 1), are read as signed
    infinities.

    It is not required that e_min = 1 - e_max.
    '''

    radix = attr.ib(validator=_check_radix)
    precision = attr.ib(validator=_check_precision)
    e_min = attr.ib(validator=_check_int)
    e_max = attr.ib(validator=_check_int)

    @e_max.validator
    def _check_e_max(self, attribute, value):
        if value < self.e_min:
            raise InvalidFormatError(f'e_max {value} is less than e_min {self.e_min}')

    @classmethod
    def from_pair(cls, precision, e_width):
        '''Construct a binary format from the specified precision and exponent width.'''
        if not isinstance(e_width, int) or isinstance(e_width, bool):
            raise TypeError(f'e_width must be an integer, not {type(e_width).__name__}')
        if e_width < 2:
            raise InvalidFormatError(f'exponent width must be at least 2: {e_width}')
        e_max = (1 << (e_width - 1)) - 1
        return cls(2, precision, 1 - e_max, e_max)

    def __repr__(self):
        return (f'IEEEFormat(radix={self.radix}, precision={self.precision}, '
                f'e_min={self.e_min}, e_max={self.e_max})')

    @property
    def fixed_view(self):
        '''The subnormal regime as a FixedFormat.'''
        return FixedFormat(self.radix, self.precision, self.e_min)

    @property
    def float_view(self):
        '''The normal regime, exponent range aside, as a FloatFormat.'''
        return FloatFormat(self.radix, self.precision)

    def max_finite(self):
        return max_finite(self)

    def threshold(self):
        return threshold(self)

    def epsilon(self):
        return epsilon(self)

    def classify(self, value):
        return classify(self, value)

    def exponent_of(self, value):
        return exponent_of(self, value)

    def is_representable(self, value):
        return is_representable(self, value)

    def round(self, value, rounding=None, context=None):
        '''Return value correctly rounded to this format.

        If rounding is None the context's rounding mode is used.  Status flags are raised
        on the context (the current thread's context if None).
        '''
        context = context or get_context()
        rounding = _check_rounding(context.rounding if rounding is None else rounding)
        value = exact(value)
        result = round_ieee(self, rounding, value)

        if value:
            overflow = abs(round_float(self.float_view, rounding, value)) >= threshold(self)
            if overflow:
                context.flags |= Flags.OVERFLOW | Flags.INEXACT
            elif result != value:
                context.flags |= Flags.INEXACT
                if abs(value) < min_normal(self):
                    context.flags |= Flags.UNDERFLOW
        return result


def validate(radix, precision, e_min=None, e_max=None):
    '''Return the format described by the parameters: a FloatFormat if e_min is omitted, a
    FixedFormat if only e_max is omitted, and an IEEEFormat otherwise.

    Raises InvalidFormatError if the parameters violate a format invariant.
    '''
    if e_min is None:
        if e_max is not None:
            raise TypeError('e_max given without e_min')
        return FloatFormat(radix, precision)
    if e_max is None:
        return FixedFormat(radix, precision, e_min)
    return IEEEFormat(radix, precision, e_min, e_max)


def _require_ieee(fmt):
    if not isinstance(fmt, IEEEFormat):
        raise TypeError(f'an IEEEFormat is required, not {type(fmt).__name__}')


def to_fixed_view(fmt):
    _require_ieee(fmt)
    return fmt.fixed_view


def to_float_view(fmt):
    _require_ieee(fmt)
    return fmt.float_view


#
# Exact arithmetic building blocks
#

def exact(value):
    '''Return value as a Fraction.  Integers, rationals and finite Decimals are converted
    exactly; anything else, in particular a Python float, raises TypeError.'''
    if isinstance(value, Fraction):
        return value
    if isinstance(value, numbers.Rational):
        return Fraction(value.numerator, value.denominator)
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f'cannot convert {value} to an exact real')
        return Fraction(value)
    raise TypeError(f'an exact real is required, not {type(value).__name__}')


def radix_power(radix, n):
    '''Return radix^n exactly; n can be negative.'''
    if n >= 0:
        return Fraction(radix ** n)
    return Fraction(1, radix ** -n)


def _ilog(radix, value):
    '''Return the integer e with radix^e <= value < radix^(e + 1) for a positive Fraction.'''
    # 2^(nb - db - 1) < value < 2^(nb - db + 1) and radix >= 2, so the exponent is
    # bracketed by the difference of the bit lengths.
    bound = abs(value.numerator.bit_length() - value.denominator.bit_length()) + 1
    lo, hi = -bound, bound
    # Invariant: radix^lo <= value < radix^hi
    while hi - lo > 1:
        mid = (lo + hi) // 2
        if radix_power(radix, mid) <= value:
            lo = mid
        else:
            hi = mid
    return lo


# When precision is lost during rounding these indicate what fraction of the quantum was
# lost.  They combine the roles of 'guard' and 'sticky' bits.
LF_EXACTLY_ZERO = 0
LF_LESS_THAN_HALF = 1
LF_EXACTLY_HALF = 2
LF_MORE_THAN_HALF = 3


def _lost_fraction(fraction):
    '''Classify a fraction in [0, 1).'''
    if not fraction:
        return LF_EXACTLY_ZERO
    twice = fraction * 2
    if twice < 1:
        return LF_LESS_THAN_HALF
    if twice == 1:
        return LF_EXACTLY_HALF
    return LF_MORE_THAN_HALF


def round_up(rounding, lost_fraction, sign, is_odd):
    '''Return True if, when an operation is inexact, the result should be rounded up (i.e.,
    away from zero by incrementing the significand).

    sign is True for negative numbers, and is_odd indicates if the least significant digit
    of the truncated significand is odd, which is needed for ties-to-even rounding.
    '''
    if lost_fraction == LF_EXACTLY_ZERO:
        return False

    if rounding == TO_NEAREST:
        if lost_fraction == LF_EXACTLY_HALF:
            return is_odd
        return lost_fraction == LF_MORE_THAN_HALF
    elif rounding == TO_POSITIVE:
        return not sign
    elif rounding == TO_NEGATIVE:
        return sign
    return False


def _check_rounding(rounding):
    '''Return rounding if it is a RoundingMode, otherwise raise TypeError.'''
    if not isinstance(rounding, RoundingMode):
        raise TypeError(f'rounding must be a RoundingMode, not {rounding!r}')
    return rounding


#
# Fixed-point rounding
#

def finite_boundary(fmt):
    '''Return the largest finite magnitude of a FixedFormat.'''
    return (fmt.radix ** fmt.precision - 1) * fmt.quantum


def round_fixed(fmt, rounding, value):
    '''Return value rounded to a multiple of the format's quantum.  The grid is unbounded.'''
    _check_rounding(rounding)
    quantum = fmt.quantum
    scaled = exact(value) / quantum
    sign = scaled < 0
    magnitude = abs(scaled)
    significand = magnitude.numerator // magnitude.denominator
    lost_fraction = _lost_fraction(magnitude - significand)

    if round_up(rounding, lost_fraction, sign, bool(significand & 1)):
        significand += 1

    return (-significand if sign else significand) * quantum


#
# Floating-point rounding
#

def normalize(fmt, value):
    '''Return a Normalized tuple (exponent, digit, residual) for a non-zero value.

    exponent is the exponent of the leading digit, digit the leading digit, and residual
    the remainder with the sign of value, so that

        value = sign(value) * digit * radix^exponent + residual

    with 1 <= digit < radix and |residual| < radix^exponent.
    '''
    value = exact(value)
    if not value:
        raise ValueError('cannot normalize zero')

    radix = fmt.radix
    magnitude = abs(value)
    exponent = _ilog(radix, magnitude)
    scale = radix_power(radix, exponent)
    digit = magnitude // scale
    assert 1 <= digit < radix
    residual = magnitude - digit * scale
    if value < 0:
        residual = -residual
    return Normalized(exponent, digit, residual)


def round_float(fmt, rounding, value):
    '''Return value rounded to the FloatFormat.

    The leading digit is exact; the residual is rounded on the grid of a fixed-point format
    whose e_min is the leading exponent.  Since the radix is even, the leading digit
    contributes an even amount to the significand, so the residual's parity decides ties.
    '''
    _check_rounding(rounding)
    value = exact(value)
    if not value:
        return Fraction(0)

    exponent, digit, residual = normalize(fmt, value)
    lead = digit * radix_power(fmt.radix, exponent)
    if value < 0:
        lead = -lead
    residual_fmt = FixedFormat(fmt.radix, fmt.precision, exponent)
    return lead + round_fixed(residual_fmt, rounding, residual)


#
# IEEE rounding
#

def max_finite(fmt):
    '''Return the largest finite magnitude of an IEEEFormat.'''
    _require_ieee(fmt)
    return ((fmt.radix ** fmt.precision - 1)
            * radix_power(fmt.radix, fmt.e_max - fmt.precision + 1))


def threshold(fmt):
    '''Return the magnitude at and beyond which values are infinite.'''
    return max_finite(fmt) + radix_power(fmt.radix, fmt.e_max - fmt.precision + 1)


def _finf(fmt):
    return finite_boundary(fmt.fixed_view)


def _overflow_value(fmt, rounding, value):
    '''Return the result for a value whose magnitude is at least the threshold.  Only the
    directions that move towards zero clamp to the largest finite magnitude.'''
    largest = max_finite(fmt)
    if rounding == TO_NEAREST:
        return value
    if rounding == TO_ZERO:
        return -largest if value < 0 else largest
    if rounding == TO_POSITIVE:
        return -largest if value < 0 else value
    # TO_NEGATIVE
    return largest if value > 0 else value


def round_ieee(fmt, rounding, value):
    '''Return value rounded to the IEEEFormat.

    Magnitudes up to the fixed view's finite boundary are rounded as fixed-point; those
    below the threshold as floating-point.  Beyond that the rounding mode decides between
    infinity (value is returned unchanged) and the largest finite value.
    '''
    _require_ieee(fmt)
    _check_rounding(rounding)
    value = exact(value)
    magnitude = abs(value)

    if magnitude <= _finf(fmt):
        return round_fixed(fmt.fixed_view, rounding, value)
    if magnitude < threshold(fmt):
        return round_float(fmt.float_view, rounding, value)

    result = _overflow_value(fmt, rounding, value)
    logger.debug('%r absorbed to %s in %r under %r', value,
                 'infinity' if result == value else result, fmt, rounding)
    return result


def round_value(fmt, rounding, value):
    '''Return value correctly rounded to fmt, which can be any of the three format types.'''
    if isinstance(fmt, IEEEFormat):
        return round_ieee(fmt, rounding, value)
    if isinstance(fmt, FloatFormat):
        return round_float(fmt, rounding, value)
    if isinstance(fmt, FixedFormat):
        return round_fixed(fmt, rounding, value)
    raise TypeError(f'not a format: {fmt!r}')


def rounding_error(fmt, rounding, value):
    '''Return the signed error committed by rounding value to fmt.'''
    value = exact(value)
    return round_value(fmt, rounding, value) - value


#
# Classification
#

def epsilon(fmt):
    '''Machine epsilon: half the distance from 1 to the next larger value.'''
    return radix_power(fmt.radix, 1 - fmt.precision) / 2


def min_normal(fmt):
    _require_ieee(fmt)
    return radix_power(fmt.radix, fmt.e_min)


def min_subnormal(fmt):
    _require_ieee(fmt)
    return fmt.fixed_view.quantum


def is_positive_infinity(fmt, value):
    return threshold(fmt) <= exact(value)


def is_negative_infinity(fmt, value):
    return exact(value) <= -threshold(fmt)


def exponent_of(fmt, value):
    '''Return the exponent of value's leading digit, or e_min in the fixed regime.'''
    _require_ieee(fmt)
    value = exact(value)
    if abs(value) <= _finf(fmt):
        return fmt.e_min
    return normalize(fmt.float_view, value).exponent


def ulp(fmt, value):
    '''Return the spacing of fmt's values at value's exponent.'''
    return radix_power(fmt.radix, exponent_of(fmt, value) - fmt.precision + 1)


def classify(fmt, value):
    '''Return the Classification of value.  Every value gets exactly one.'''
    _require_ieee(fmt)
    value = exact(value)
    if is_positive_infinity(fmt, value):
        return Classification.POSITIVE_INFINITY
    if is_negative_infinity(fmt, value):
        return Classification.NEGATIVE_INFINITY
    if abs(value) <= _finf(fmt):
        return Classification.FIXED
    return Classification.FLOAT_NORMAL


def _on_grid(value, quantum):
    return (value / quantum).denominator == 1


def is_representable(fmt, value):
    '''Return True if value is a fixed-regime value (zero included), a normal value with
    exponent in [e_min, e_max], or an absorbed infinity.'''
    _require_ieee(fmt)
    value = exact(value)
    if is_positive_infinity(fmt, value) or is_negative_infinity(fmt, value):
        return True
    if abs(value) <= _finf(fmt):
        return _on_grid(value, fmt.fixed_view.quantum)
    exponent = normalize(fmt.float_view, value).exponent
    if not fmt.e_min <= exponent <= fmt.e_max:
        return False
    return _on_grid(value, radix_power(fmt.radix, exponent - fmt.precision + 1))


def next_up(fmt, value):
    '''Return the smallest representable finite value greater than value, or the threshold
    if value is at least the largest finite value.'''
    _require_ieee(fmt)
    value = exact(value)
    if value >= max_finite(fmt):
        return threshold(fmt)
    # Representable values are at least a quantum apart, so stepping half a quantum moves
    # strictly between value and its successor.
    if is_representable(fmt, value):
        value += min_subnormal(fmt) / 2
    return round_ieee(fmt, TO_POSITIVE, value)


def next_down(fmt, value):
    '''Return the largest representable finite value less than value, or minus the threshold
    if value is at most the most negative finite value.'''
    return -next_up(fmt, -exact(value))


#
# Execution context
#

class Context:
    '''The execution context for IEEEFormat.round().  Carries the rounding mode and status
    flags.'''

    __slots__ = ('rounding', 'flags')

    def __init__(self, *, rounding=TO_NEAREST, flags=0):
        self.rounding = _check_rounding(rounding)
        self.flags = flags

    def copy(self):
        '''Return a copy of the context.'''
        return copy.copy(self)

    def __repr__(self):
        return f'<Context rounding={self.rounding!r} flags={self.flags!r}>'


DefaultContext = Context()
tls = threading.local()


def get_context():
    '''Return the current thread's context, creating it from DefaultContext on first use.

    Only IEEEFormat.round() consults it; the module-level rounding functions take an
    explicit rounding mode and never touch a context.
    '''
    try:
        return tls.context
    except AttributeError:
        tls.context = DefaultContext.copy()
        return tls.context


def set_context(context):
    '''Install context (not a copy) as the one IEEEFormat.round() uses on this thread.'''
    tls.context = context


class LocalContext:
    '''Run a with-block under a copy of context (or of the current context if None), so that
    IEEEFormat.round() calls inside it read that rounding mode and raise flags on the copy.
    The previous context is restored on exit.
    '''

    def __init__(self, context=None):
        self.saved_context = None
        self.context_to_set = context

    def __enter__(self):
        self.saved_context = get_context()
        context = (self.context_to_set or self.saved_context).copy()
        set_context(context)
        return context

    def __exit__(self, etype, value, traceback):
        set_context(self.saved_context)


local_context = LocalContext


#
# Predefined formats
#

IEEEhalf = IEEEFormat.from_pair(11, 5)
IEEEsingle = IEEEFormat.from_pair(24, 8)
IEEEdouble = IEEEFormat.from_pair(53, 11)
IEEEquad = IEEEFormat.from_pair(113, 15)

Decimal32 = IEEEFormat(10, 7, -95, 96)
Decimal64 = IEEEFormat(10, 16, -383, 384)
Decimal128 = IEEEFormat(10, 34, -6143, 6144)
