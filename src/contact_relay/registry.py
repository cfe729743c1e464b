# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tenant lookup by realm.

The registry is built once from configuration and never mutated, so it can
be shared by concurrent requests without locking.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from types import MappingProxyType

from .models import ClientConfiguration


class ClientRegistry:
    """Read-only mapping from public key to :class:`ClientConfiguration`.

    Lookups are exact, case-sensitive string matches; there is no prefix or
    substring matching.
    """

    def __init__(self, clients: Iterable[ClientConfiguration] = ()):
        by_key: dict[str, ClientConfiguration] = {}
        for client in clients:
            if client.public_key in by_key:
                raise ValueError(f"Duplicate client public key: {client.public_key!r}")
            by_key[client.public_key] = client
        self._clients = MappingProxyType(by_key)

    def resolve(self, realm: str | None) -> ClientConfiguration | None:
        """Return the tenant whose public key equals ``realm``, or None."""
        if not realm:
            return None
        return self._clients.get(realm)

    def __len__(self) -> int:
        return len(self._clients)

    def __iter__(self) -> Iterator[ClientConfiguration]:
        return iter(self._clients.values())

    def __contains__(self, realm: object) -> bool:
        return realm in self._clients
