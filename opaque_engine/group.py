"""Prime-order group operations for the OPRF (NIST P-256 through ``ecdsa``).

Hashing to the group follows RFC 9380 (P256_XMD:SHA-256_SSWU_RO_) with the
OPRF suite's domain separation tag, so ``hash_to_group`` and ``finalize``
match the P256-SHA256 base mode of RFC 9497.
"""
from secrets import randbelow

from ecdsa.curves import NIST256p
from ecdsa.ellipticcurve import INFINITY, PointJacobi
from ecdsa.errors import MalformedPointError
from ecdsa.numbertheory import inverse_mod

from .errors import MessageError
from .kdf import digest, lp, xor

CURVE = NIST256p.curve
ORDER = NIST256p.order
ELEMENT_LEN = 33  # SEC1 compressed

_p = CURVE.p()
_a = CURVE.a()
_b = CURVE.b()
_z = -10 % _p

HASH_DST = b"HashToGroup-OPRFV1-\x00-P256-SHA256"

# hash_to_field: L = ceil((ceil(log2(p)) + 128) / 8)
_FIELD_LEN = 48
_BLOCK_LEN = 64


def random_scalar() -> int:
    """Random scalar in [1, n-1]."""
    return randbelow(ORDER - 1) + 1


def scalar_from_bytes(data: bytes) -> int:
    # 48 bytes of input keeps the modular bias negligible
    return int.from_bytes(data, "big") % (ORDER - 1) + 1


def expand_message_xmd(msg: bytes, dst: bytes, length: int) -> bytes:
    if len(dst) > 255:
        raise ValueError("domain separation tag too long")
    ell = -(-length // 32)
    if ell > 255:
        raise ValueError("requested length too long")
    dst_prime = dst + bytes([len(dst)])
    b0 = digest(bytes(_BLOCK_LEN) + msg + length.to_bytes(2, "big") + b"\x00" + dst_prime)
    blocks = [digest(b0 + b"\x01" + dst_prime)]
    for i in range(2, ell + 1):
        blocks.append(digest(xor(b0, blocks[-1]) + bytes([i]) + dst_prime))
    return b"".join(blocks)[:length]


def hash_to_field(msg: bytes, dst: bytes, count: int = 2):
    uniform = expand_message_xmd(msg, dst, count * _FIELD_LEN)
    return [int.from_bytes(uniform[i * _FIELD_LEN:(i + 1) * _FIELD_LEN], "big") % _p
            for i in range(count)]


def _is_square(x: int) -> bool:
    return pow(x, (_p - 1) // 2, _p) in (0, 1)


def _sqrt(x: int) -> int:
    # p = 3 mod 4
    return pow(x, (_p + 1) // 4, _p)


def map_to_curve(u: int):
    """Simplified SWU map. Both candidate x values are always evaluated."""
    tv1 = (_z * _z * pow(u, 4, _p) + _z * u * u) % _p
    tv1 = pow(tv1, _p - 2, _p)
    x1 = (-_b * inverse_mod(_a, _p) * (1 + tv1)) % _p
    if tv1 == 0:
        x1 = _b * inverse_mod(_z * _a, _p) % _p
    gx1 = (pow(x1, 3, _p) + _a * x1 + _b) % _p
    x2 = _z * u * u * x1 % _p
    gx2 = (pow(x2, 3, _p) + _a * x2 + _b) % _p
    y1, y2 = _sqrt(gx1), _sqrt(gx2)
    if _is_square(gx1):
        x, y = x1, y1
    else:
        x, y = x2, y2
    if u % 2 != y % 2:
        y = _p - y
    return x, y


def hash_to_group(msg: bytes, dst: bytes = HASH_DST) -> PointJacobi:
    """Maps ``msg`` onto the curve; nobody knows the discrete log of the result."""
    u0, u1 = hash_to_field(msg, dst)
    q0 = PointJacobi(CURVE, *map_to_curve(u0), 1, order=ORDER)
    q1 = PointJacobi(CURVE, *map_to_curve(u1), 1, order=ORDER)
    point = q0 + q1
    if point == INFINITY:
        raise MessageError("could not map input onto the curve")
    return point


def serialize(point) -> bytes:
    if point == INFINITY:
        raise MessageError("refusing to encode the identity element")
    return point.to_bytes("compressed")


def deserialize(data: bytes) -> PointJacobi:
    if len(data) != ELEMENT_LEN:
        raise MessageError(f"group element must be {ELEMENT_LEN} bytes")
    try:
        return PointJacobi.from_bytes(CURVE, bytes(data), valid_encodings=["compressed"], order=ORDER)
    except MalformedPointError as e:
        raise MessageError("invalid group element") from e


def blind(password: bytes):
    """Returns ``(r, r * H(password))``."""
    r = random_scalar()
    return r, hash_to_group(password) * r


def evaluate(key: int, blinded):
    return blinded * key


def unblind(r: int, evaluated):
    return evaluated * inverse_mod(r, ORDER)


def finalize(password: bytes, unblinded) -> bytes:
    return digest(lp(password) + lp(serialize(unblinded)) + b"Finalize")
