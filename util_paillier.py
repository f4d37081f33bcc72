"""Arithmetic provider for the Paillier module.

Thin wrappers over gmpy2 and the system CSPRNG. Every function returns a
plain ``int`` so callers never have to care about ``mpz``.
"""

import random

import gmpy2

_USE_MOD_FROM_GMP_SIZE = (1 << (8*2))

# os.urandom backed, safe to share between threads
_rand = random.SystemRandom()


def powmod(a, b, c):
    """Return int: (a ** b) % c"""
    if a == 1:
        return 1
    if max(a, b, c) < _USE_MOD_FROM_GMP_SIZE:
        return pow(a, b, c)
    return int(gmpy2.powmod(a, b, c))


def invert(a, b):
    """Return the inverse of *a* mod *b*.

    Raises ValueError when gcd(a, b) != 1.
    """
    try:
        return int(gmpy2.invert(a, b))
    except ZeroDivisionError:
        raise ValueError('%d has no inverse mod %d' % (a, b)) from None


def gcd(a, b):
    return int(gmpy2.gcd(a, b))


def lcm(a, b):
    return int(gmpy2.lcm(a, b))


def random_below(bound, lower=0):
    """Return a uniformly random int in [lower, bound) from the system CSPRNG."""
    return _rand.randrange(lower, bound)


def getprimeover(N):
    """Return a probable prime of roughly N bits.

    A random N-bit number with its top bit forced is advanced to the next
    prime, so the result has N bits, or N + 1 in the rare case the search
    runs past 2**N.
    """
    r = gmpy2.mpz(_rand.getrandbits(N))
    r = gmpy2.bit_set(r, N - 1)
    return int(gmpy2.next_prime(r))
