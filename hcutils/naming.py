"""Names for the resources a run creates."""

from __future__ import annotations

import random
import string

NAME_PREFIX = "hcutil"


def random_digits(n: int) -> str:
    return "".join(random.choices(string.digits, k=n))


def temp_key_name() -> str:
    return f"{NAME_PREFIX}-temp-ssh-{random_digits(5)}"


def temp_server_name() -> str:
    return f"{NAME_PREFIX}-temp-srv-{random_digits(5)}"


def uploaded_volume_name() -> str:
    return f"{NAME_PREFIX}-uploaded-volume-{random_digits(5)}"
