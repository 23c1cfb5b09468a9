"""Password strength validation.

Pure: no I/O, no audit writes. Callers audit failures using
``PasswordValidationResult.violated_rules`` (rule names only, never the
password).
"""

from dataclasses import dataclass, field
from string import ascii_lowercase, digits

from schoolgate.core.policy import PasswordPolicy

DEFAULT_PASSWORD_POLICY = PasswordPolicy()


class PasswordPolicyError(ValueError):
    """Raised by callers that treat an invalid password as an error."""

    def __init__(self, result: "PasswordValidationResult"):
        self.result = result
        super().__init__("; ".join(result.errors))


@dataclass
class PasswordValidationResult:
    errors: list[str] = field(default_factory=list)
    violated_rules: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add(self, rule: str, message: str) -> None:
        self.violated_rules.append(rule)
        self.errors.append(message)


def longest_sequential_run(password: str) -> int:
    """Length of the longest ascending run of letters or of digits.

    Letters compare case-insensitively ("aBcD" is a run of 4). A run never
    mixes letters and digits.
    """
    lowered = password.lower()
    longest = 1 if lowered else 0
    current = 1
    for prev, char in zip(lowered, lowered[1:]):
        same_class = (prev in ascii_lowercase and char in ascii_lowercase) or (
            prev in digits and char in digits
        )
        if same_class and ord(char) == ord(prev) + 1:
            current += 1
            longest = max(longest, current)
        else:
            current = 1
    return longest


def longest_repeated_run(password: str) -> int:
    """Length of the longest run of one character repeated back to back."""
    longest = 1 if password else 0
    current = 1
    for prev, char in zip(password, password[1:]):
        current = current + 1 if char == prev else 1
        longest = max(longest, current)
    return longest


def validate_password(
    password: str, policy: PasswordPolicy = DEFAULT_PASSWORD_POLICY
) -> PasswordValidationResult:
    """Check every rule and report all violations, in a stable order."""
    result = PasswordValidationResult()

    if len(password) < policy.min_length:
        result.add("min_length", f"Password must be at least {policy.min_length} characters long")

    if policy.require_uppercase and not any(c.isupper() for c in password):
        result.add("uppercase", "Password must contain at least one uppercase letter")

    if policy.require_lowercase and not any(c.islower() for c in password):
        result.add("lowercase", "Password must contain at least one lowercase letter")

    if policy.require_numbers and not any(c.isdigit() for c in password):
        result.add("number", "Password must contain at least one number")

    if policy.require_special_chars and not any(c in policy.special_chars for c in password):
        result.add(
            "special_char",
            f"Password must contain at least one special character ({policy.special_chars})",
        )

    if policy.blacklist_common and password.lower() in policy.common_passwords:
        result.add("common_password", "Password is too common. Please choose a more unique password")

    if (
        policy.prevent_sequential_chars
        and longest_sequential_run(password) > policy.max_sequential_chars
    ):
        result.add(
            "sequential_chars",
            f"Password cannot contain more than {policy.max_sequential_chars} sequential characters",
        )

    if policy.prevent_repeated_chars and longest_repeated_run(password) > policy.max_repeated_chars:
        result.add(
            "repeated_chars",
            f"Password cannot contain more than {policy.max_repeated_chars} repeated characters",
        )

    return result
