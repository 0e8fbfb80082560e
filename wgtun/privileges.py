"""Giving up root privileges in favour of the user who started the process."""

from __future__ import annotations

import os
import pwd
from typing import Callable, Tuple


class DropPrivilegesError(Exception):
    """Privileges could not be looked up or dropped."""


def get_saved_ids() -> Tuple[int, int]:
    """Return ``(uid, gid)`` of the user logged in on the controlling terminal."""
    try:
        login = os.getlogin()
    except OSError:
        raise DropPrivilegesError("NULL from getlogin") from None
    try:
        entry = pwd.getpwnam(login)
    except KeyError:
        raise DropPrivilegesError("NULL from getpwnam") from None
    return entry.pw_uid, entry.pw_gid


def _succeeds(call: Callable[[int], None], arg: int) -> bool:
    try:
        call(arg)
    except OSError:
        return False
    return True


def drop_privileges() -> None:
    """Switch to the saved user and group, and make sure root cannot be regained."""
    uid, gid = get_saved_ids()
    try:
        os.setgid(gid)
        os.setuid(uid)
    except OSError as exc:
        raise DropPrivilegesError(exc.strerror or str(exc)) from exc

    if _succeeds(os.setgid, 0) or _succeeds(os.setuid, 0):
        raise DropPrivilegesError("Failed to permanently drop privileges")