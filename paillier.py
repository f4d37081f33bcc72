#!/usr/bin/env python3
# Paillier cryptosystem with additive and scalar-multiplicative homomorphism.
# Keys are immutable values threaded explicitly through every operation.

import hashlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass

import numpy
from gmpy2 import mpz

from util_paillier import gcd, getprimeover, invert, lcm, powmod, random_below

logger = logging.getLogger(__name__)

DEFAULT_KEYSIZE = 3072
MIN_KEYSIZE = 16
DEFAULT_MAX_RETRIES = None


class KeyGenerationError(RuntimeError):
    """Raised when key generation runs out of its retry budget."""


def _check_int(value, name):
    if isinstance(value, bool) or not isinstance(value, (int, type(mpz(1)), numpy.integer)):
        raise TypeError('Expected int type %s but got: %s' % (name, type(value)))
    return int(value)


def l_function(x, n):
    """L(x, n) = (x - 1) // n"""
    return (x - 1) // n


def decryption_coefficient(g, lam, n):
    """Return mu = L(g^lam mod n^2)^-1 mod n, or None if it does not exist."""
    x = l_function(powmod(g, lam, n * n), n)
    if gcd(x, n) != 1:
        return None
    return invert(x, n)


@dataclass(frozen=True, repr=False)
class PaillierPublicKey:
    """Public half of a Paillier key.

    Attributes:
      n (int): modulus, the product of two distinct primes.
      g (int): generator in the multiplicative group mod n^2.
      nsquare (int): n ** 2, derived at construction.
    """
    n: int
    g: int

    def __post_init__(self):
        n = _check_int(self.n, 'modulus')
        g = _check_int(self.g, 'generator')
        if n < 2:
            raise ValueError('modulus must be at least 2, got %d' % n)
        if not 1 <= g < n * n:
            raise ValueError('generator out of range for modulus')
        object.__setattr__(self, 'n', n)
        object.__setattr__(self, 'g', g)
        object.__setattr__(self, 'nsquare', n * n)

    @property
    def fingerprint(self):
        digest = hashlib.sha1(('%d:%d' % (self.nsquare, self.g)).encode('ascii'))
        return digest.hexdigest()[:10]

    def __repr__(self):
        return "<PaillierPublicKey {}>".format(self.fingerprint)


@dataclass(frozen=True, repr=False)
class PaillierPrivateKey:
    lam: int
    mu: int

    def __post_init__(self):
        object.__setattr__(self, 'lam', _check_int(self.lam, 'lambda'))
        object.__setattr__(self, 'mu', _check_int(self.mu, 'mu'))

    def __repr__(self):
        return "<PaillierPrivateKey>"


@dataclass(frozen=True, repr=False)
class PaillierKeyPair:
    public_key: PaillierPublicKey
    private_key: PaillierPrivateKey

    def __post_init__(self):
        if not isinstance(self.public_key, PaillierPublicKey):
            raise TypeError('public_key should be a PaillierPublicKey')
        if not isinstance(self.private_key, PaillierPrivateKey):
            raise TypeError('private_key should be a PaillierPrivateKey')

    def __repr__(self):
        return "<PaillierKeyPair for {!r}>".format(self.public_key)


def _generator(n, nsquare):
    alpha = random_below(n)
    beta = random_below(n)
    return ((alpha * n + 1) * powmod(beta, n, nsquare)) % nsquare


def _assemble_keypair(p, q, n, g):
    # None signals that mu does not exist for this candidate
    lam = lcm(p - 1, q - 1)
    mu = decryption_coefficient(g, lam, n)
    if mu is None:
        return None
    return PaillierKeyPair(PaillierPublicKey(n, g), PaillierPrivateKey(lam, mu))


def keypair_from_primes(p, q, g):
    """Build a key pair from known primes and generator.

    Raises ValueError if p == q or if g admits no decryption coefficient.
    """
    p = _check_int(p, 'prime')
    q = _check_int(q, 'prime')
    g = _check_int(g, 'generator')
    if p == q:
        raise ValueError('p and q have to be different')
    keypair = _assemble_keypair(p, q, p * q, g)
    if keypair is None:
        raise ValueError('mu does not exist for the given generator')
    return keypair


def generate_paillier_keypair(n_length=DEFAULT_KEYSIZE, max_retries=DEFAULT_MAX_RETRIES,
                              private_keyring=None):
    """Return a new :class:`PaillierKeyPair` whose modulus has *n_length* bits.

    Candidates with equal primes, a misaligned modulus, or no decryption
    coefficient are discarded and drawn again. With *max_retries* set,
    :class:`KeyGenerationError` is raised once that many candidates have been
    discarded. The key pair is added to *private_keyring* if given.
    """
    n_length = _check_int(n_length, 'key size')
    if n_length < MIN_KEYSIZE:
        raise ValueError('key size must be at least %d bits, got %d' % (MIN_KEYSIZE, n_length))
    if max_retries is not None:
        max_retries = _check_int(max_retries, 'max_retries')
        if max_retries < 0:
            raise ValueError('max_retries must be non-negative')

    half = n_length // 2
    discarded = 0
    while max_retries is None or discarded <= max_retries:
        p = getprimeover(half + 1)
        q = getprimeover(half)
        n = p * q

        if p == q:
            reason = 'p == q'
        elif n.bit_length() != n_length:
            reason = 'modulus has %d bits' % n.bit_length()
        else:
            nsquare = n * n
            g = _generator(n, nsquare)
            if gcd(g, n) != 1:
                reason = 'generator shares a factor with n'
            else:
                keypair = _assemble_keypair(p, q, n, g)
                if keypair is not None:
                    logger.info('Generated %d-bit key pair %r after %d attempt(s)',
                                n_length, keypair.public_key, discarded + 1)
                    if private_keyring is not None:
                        private_keyring.add(keypair)
                    return keypair
                reason = 'mu does not exist'

        discarded += 1
        logger.debug('Discarding key candidate %d: %s', discarded, reason)

    raise KeyGenerationError('no valid %d-bit key pair after %d attempts' % (n_length, discarded))


def _check_public_key(public_key):
    if not isinstance(public_key, PaillierPublicKey):
        raise TypeError('public_key should be a PaillierPublicKey, not %s' % type(public_key))


def _check_plaintext(public_key, plaintext):
    m = _check_int(plaintext, 'plaintext')
    if not 0 <= m < public_key.n:
        raise ValueError('plaintext out of range [0, n)')
    return m


def _check_ciphertext(public_key, ciphertext):
    c = _check_int(ciphertext, 'ciphertext')
    if not 0 <= c < public_key.nsquare:
        raise ValueError('ciphertext out of range [0, n^2)')
    return c


def _random_nonce(public_key):
    while True:
        r = random_below(public_key.n, lower=1)
        if gcd(r, public_key.n) == 1:
            return r


def _raw_encrypt(public_key, m, r):
    nsquare = public_key.nsquare
    return powmod(public_key.g, m, nsquare) * powmod(r, public_key.n, nsquare) % nsquare


def encrypt(public_key, plaintext):
    """Encrypt 0 <= plaintext < n with a fresh random nonce."""
    _check_public_key(public_key)
    m = _check_plaintext(public_key, plaintext)
    return _raw_encrypt(public_key, m, _random_nonce(public_key))


def raw_encrypt(public_key, plaintext, r_value):
    """Encrypt with a caller supplied nonce 1 <= r_value < n."""
    _check_public_key(public_key)
    m = _check_plaintext(public_key, plaintext)
    r = _check_int(r_value, 'nonce')
    if not 1 <= r < public_key.n:
        raise ValueError('nonce out of range [1, n)')
    return _raw_encrypt(public_key, m, r)


def decrypt(keypair, ciphertext):
    if not isinstance(keypair, PaillierKeyPair):
        raise TypeError('keypair should be a PaillierKeyPair, not %s' % type(keypair))
    public_key = keypair.public_key
    c = _check_ciphertext(public_key, ciphertext)
    u = powmod(c, keypair.private_key.lam, public_key.nsquare)
    return l_function(u, public_key.n) * keypair.private_key.mu % public_key.n


def add(public_key, a, b):
    """Ciphertext of m_a + m_b mod n."""
    _check_public_key(public_key)
    a = _check_ciphertext(public_key, a)
    b = _check_ciphertext(public_key, b)
    return a * b % public_key.nsquare


def add_plain(public_key, ciphertext, plaintext):
    """Ciphertext of m + plaintext mod n, blinded with a fresh nonce."""
    _check_public_key(public_key)
    c = _check_ciphertext(public_key, ciphertext)
    m = _check_plaintext(public_key, plaintext)
    nsquare = public_key.nsquare
    obfuscator = powmod(_random_nonce(public_key), public_key.n, nsquare)
    return c * powmod(public_key.g, m, nsquare) % nsquare * obfuscator % nsquare


def multiply_by_scalar(public_key, ciphertext, scalar):
    """Ciphertext of scalar * m mod n, for 0 <= scalar < n.

    Scalars 0 and 1 produce freshly randomized ciphertexts so the output
    never reveals them.
    """
    _check_public_key(public_key)
    c = _check_ciphertext(public_key, ciphertext)
    k = _check_int(scalar, 'scalar')
    if not 0 <= k < public_key.n:
        raise ValueError('Scalar out of bounds: %i' % k)

    if k == 0:
        return encrypt(public_key, 0)
    if k == 1:
        return add(public_key, c, encrypt(public_key, 0))
    return powmod(c, k, public_key.nsquare)


class EncryptedNumber(object):
    """A ciphertext bound to the public key it was encrypted under."""

    def __init__(self, public_key, ciphertext):
        _check_public_key(public_key)
        self.public_key = public_key
        self.__ciphertext = _check_ciphertext(public_key, ciphertext)

    @property
    def ciphertext(self):
        return self.__ciphertext

    def __repr__(self):
        return "<EncryptedNumber under {!r}>".format(self.public_key)

    def __add__(self, other):
        if isinstance(other, EncryptedNumber):
            return self._add_encrypted(other)
        return self._add_scalar(other)

    def __radd__(self, other):
        return self.__add__(other)

    def __mul__(self, other):
        if isinstance(other, EncryptedNumber):
            raise NotImplementedError('Multiplying two encrypted numbers is not supported')
        product = multiply_by_scalar(self.public_key, self.__ciphertext, other)
        return EncryptedNumber(self.public_key, product)

    def __rmul__(self, other):
        return self.__mul__(other)

    def _add_scalar(self, scalar):
        sum_ciphertext = add_plain(self.public_key, self.__ciphertext, scalar)
        return EncryptedNumber(self.public_key, sum_ciphertext)

    def _add_encrypted(self, other):
        if self.public_key != other.public_key:
            raise ValueError('Mismatched public keys for addition')
        sum_ciphertext = add(self.public_key, self.__ciphertext, other.ciphertext)
        return EncryptedNumber(self.public_key, sum_ciphertext)


def encrypt_number(public_key, plaintext):
    return EncryptedNumber(public_key, encrypt(public_key, plaintext))


class PaillierPrivateKeyring(Mapping):
    """Key pairs indexed by their public key."""

    def __init__(self, keypairs=None):
        if keypairs is None:
            keypairs = []
        self.__keyring = {}
        for keypair in keypairs:
            self.add(keypair)

    def __getitem__(self, public_key):
        return self.__keyring[public_key]

    def __len__(self):
        return len(self.__keyring)

    def __iter__(self):
        return iter(self.__keyring)

    def __delitem__(self, public_key):
        del self.__keyring[public_key]

    def add(self, keypair):
        if not isinstance(keypair, PaillierKeyPair):
            raise TypeError("keypair should be of type PaillierKeyPair, "
                            "not %s" % type(keypair))
        self.__keyring[keypair.public_key] = keypair

    def decrypt(self, encrypted_number):
        if not isinstance(encrypted_number, EncryptedNumber):
            raise TypeError('Expected encrypted_number to be an EncryptedNumber'
                            ' not: %s' % type(encrypted_number))
        relevant_keypair = self.__keyring[encrypted_number.public_key]
        return decrypt(relevant_keypair, encrypted_number.ciphertext)
