"""
One-time codes: generation, derivation and validation.

Two kinds of codes are supported:

- time-based codes (TOTP, RFC 6238) derived from a shared base32 secret, the
  current time and the period of a window. The secret is stored, the code is
  recomputed on validation. Used by authenticator apps and by the codes sent
  by email.
- simple random codes drawn from a character set. Only the bcrypt hash of the
  code is stored.

Validation never raises for a wrong code, `is_code_valid` returns a boolean.
`check_code` is the explanatory variant used by the verification flows to
tell an expired verification from a wrong code.
"""
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
import hashlib
import secrets
import string
import time
from typing import Literal, Protocol
from urllib.parse import quote, urlencode
import bcrypt
import pyotp

from epic_auth.core.config import settings
from epic_auth.core.exceptions import InvalidCode, VerificationExpired


ALGORITHMS = {
    "SHA1": hashlib.sha1,
    "SHA256": hashlib.sha256,
    "SHA512": hashlib.sha512,
}
RANDOM_ALGORITHM = "RANDOM"
DIGITS = string.digits
# 32 base32 characters = 160 bits of entropy
SECRET_LENGTH = 32


class CodeRecord(Protocol):
    """What the validator needs from a stored verification."""
    type: str
    target: str
    secret: str
    algorithm: str
    period: int
    digits: int
    char_set: str
    expires_at: int | None


@dataclass(frozen=True)
class GeneratedCode:
    """A freshly generated code and the parameters needed to check it later."""
    secret: str
    algorithm: str
    period: int
    digits: int
    char_set: str
    otp: str

    def fields(self) -> dict:
        """The persisted fields, i.e. everything but the code itself."""
        data = asdict(self)
        data.pop("otp")
        return data


def _check_options(digits: int, period: int, char_set: str) -> None:
    if digits <= 0:
        raise ValueError(f"digits must be positive, got {digits}")
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")
    if not char_set:
        raise ValueError("char_set must not be empty")


def _as_datetime(for_time: int | float | datetime | None) -> datetime:
    if for_time is None:
        return datetime.now(timezone.utc)
    if isinstance(for_time, datetime):
        return for_time
    return datetime.fromtimestamp(int(for_time), tz=timezone.utc)


def _totp(secret: str, algorithm: str, period: int, digits: int) -> pyotp.TOTP:
    try:
        digest = ALGORITHMS[algorithm.upper()]
    except KeyError as e:
        raise ValueError(f"Unsupported TOTP algorithm: {algorithm}") from e
    return pyotp.TOTP(s=secret, digits=digits, digest=digest, interval=period)


# ----- GENERATORS ----- #


def generate_totp(
    algorithm: str | None = None,
    period: int | None = None,
    digits: int | None = None,
    char_set: str = DIGITS,
    now: int | None = None
) -> GeneratedCode:
    """
    Generate a new TOTP secret and the code valid at `now`.

    :param str algorithm: The HMAC algorithm (SHA1, SHA256, SHA512), defaults to `OTP_ALGORITHM`.
    :param int period: The length of a window in seconds, defaults to `OTP_AUTHENTICATOR_INTERVAL`.
    :param int digits: The length of the code, defaults to `OTP_LENGTH`.
    :param str char_set: The alphabet of the code, recorded for reference (TOTP codes are numeric).
    :param int now: The Unix time to compute the code for, defaults to the current time.
    :return GeneratedCode: The secret, its parameters and the current code.
    """
    algorithm = (algorithm or settings.OTP_ALGORITHM).upper()
    period = period or settings.OTP_AUTHENTICATOR_INTERVAL
    digits = digits or settings.OTP_LENGTH
    _check_options(digits, period, char_set)
    secret = pyotp.random_base32(length=SECRET_LENGTH)
    otp = _totp(secret, algorithm, period, digits).at(_as_datetime(now))
    return GeneratedCode(
        secret=secret,
        algorithm=algorithm,
        period=period,
        digits=digits,
        char_set=char_set,
        otp=otp,
    )


def generate_random_code(
    digits: int | None = None,
    char_set: str = DIGITS,
    period: int | None = None
) -> GeneratedCode:
    """
    Generate a random single-use code.

    The characters are drawn uniformly from `char_set` with a cryptographically
    secure source. Only the bcrypt hash of the code is kept as the secret.

    :param int digits: The length of the code, defaults to `OTP_LENGTH`.
    :param str char_set: The alphabet of the code.
    :param int period: The lifetime of the code in seconds, defaults to `OTP_EMAIL_INTERVAL`.
    :return GeneratedCode: The hashed secret, its parameters and the code.
    """
    digits = digits or settings.OTP_LENGTH
    period = period or settings.OTP_EMAIL_INTERVAL
    _check_options(digits, period, char_set)
    otp = "".join(secrets.choice(char_set) for _ in range(digits))
    secret = bcrypt.hashpw(otp.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
    return GeneratedCode(
        secret=secret,
        algorithm=RANDOM_ALGORITHM,
        period=period,
        digits=digits,
        char_set=char_set,
        otp=otp,
    )


def generate(kind: Literal["totp", "random"], **options) -> GeneratedCode:
    """Generate a code of the given kind, `options` are passed to the generator."""
    match kind:
        case "totp":
            return generate_totp(**options)
        case "random":
            options.pop("algorithm", None)
            options.pop("now", None)
            return generate_random_code(**options)
        case _:
            raise ValueError(f"Unknown code kind: {kind}")


def derive_code(
    secret: str,
    algorithm: str,
    period: int,
    digits: int,
    for_time: int | datetime | None = None
) -> str:
    """
    Compute the TOTP code of a secret for a given instant.

    :return str: The code of the window containing `for_time`.
    :raises ValueError: If the algorithm is not time-based.
    """
    if algorithm.upper() == RANDOM_ALGORITHM:
        raise ValueError("Random codes cannot be derived from their secret")
    return _totp(secret, algorithm, period, digits).at(_as_datetime(for_time))


# ----- VALIDATION ----- #


def is_expired(record: CodeRecord, now: int | None = None) -> bool:
    """Whether the record has an absolute expiry that is in the past."""
    if record.expires_at is None:
        return False
    now = int(time.time()) if now is None else now
    return now > record.expires_at


def _matches(code: str, record: CodeRecord, now: int | None, valid_window: int) -> bool:
    if record.algorithm.upper() == RANDOM_ALGORITHM:
        try:
            return bcrypt.checkpw(code.encode("utf-8"), record.secret.encode("utf-8"))
        except ValueError:
            return False
    if len(code) != record.digits:
        return False
    totp = _totp(record.secret, record.algorithm, record.period, record.digits)
    return totp.verify(code, for_time=_as_datetime(now), valid_window=valid_window)


def check_code(
    code: str | int,
    record: CodeRecord,
    now: int | None = None,
    valid_window: int | None = None
) -> None:
    """
    Check a submitted code against a stored verification.

    :param str code: The code submitted by the user.
    :param CodeRecord record: The stored verification.
    :param int now: The Unix time of the submission, defaults to the current time.
    :param int valid_window: The number of adjacent TOTP windows accepted on
        each side of the current one, defaults to `OTP_VALID_WINDOW`.
    :raises VerificationExpired: If the verification expired, whatever the code.
    :raises InvalidCode: If the code does not match.
    """
    if valid_window is None:
        valid_window = settings.OTP_VALID_WINDOW
    if is_expired(record, now):
        raise VerificationExpired(record.type, record.target)
    if not _matches(str(code).strip(), record, now, valid_window):
        raise InvalidCode(record.type, record.target)


def is_code_valid(
    code: str | int,
    record: CodeRecord | None,
    now: int | None = None,
    valid_window: int | None = None
) -> bool:
    """
    Decide whether a submitted code is valid for a stored verification.

    :return bool: False if the record is absent, expired, or the code does not match.
    """
    if record is None:
        return False
    try:
        check_code(code, record, now=now, valid_window=valid_window)
    except InvalidCode:
        return False
    return True


# ----- URI ----- #


def get_totp_auth_uri(
    secret: str,
    algorithm: str,
    period: int,
    digits: int,
    account_name: str,
    issuer: str
) -> str:
    """
    Build the `otpauth://` URI consumed by authenticator apps.

    Every parameter is emitted, including the defaults, so that apps which
    ignore missing parameters still derive the same codes.

    :return str: `otpauth://totp/{issuer}:{account}?secret=..&issuer=..&algorithm=..&digits=..&period=..`
    """
    label = f"{quote(issuer, safe='')}:{quote(account_name, safe='@')}"
    query = urlencode({
        "secret": secret,
        "issuer": issuer,
        "algorithm": algorithm.upper(),
        "digits": digits,
        "period": period,
    }, quote_via=quote)
    return f"otpauth://totp/{label}?{query}"
