import getpass

from typing import Callable, Optional

MAX_ATTEMPTS = 3


def ask_password(prompt: str = "Password: ", attempts: int = MAX_ATTEMPTS,
                 reader: Callable[[str], str] = getpass.getpass) -> Optional[str]:
    """Prompt with echo disabled until a non-empty answer, at most `attempts` times."""
    for _ in range(attempts):
        value = reader(prompt)
        if value:
            return value
        print("[!] Please enter your password.")
    return None
