"""
Ledger classification over the Group parent chain.

Every ledger resolves to a root group by walking parent links until a
terminal classification name is reached. Tally group trees are user
editable, so chains may be broken or circular; both resolve to UNKNOWN.
"""
from __future__ import annotations
from typing import Optional

from ..models import Group, MasterAccount, Masters

DEBTORS_GROUP = "Sundry Debtors"
CREDITORS_GROUP = "Sundry Creditors"
UNKNOWN = "Unknown"

TERMINAL_GROUPS = {
    DEBTORS_GROUP: "Debtor",
    CREDITORS_GROUP: "Creditor",
}


class MasterIndex:
    """
    Lookup of groups and ledgers with root classification.

    Usage:
        index = MasterIndex(masters)
        index.root_group("ABC Traders")    # "Sundry Debtors"
        index.root_class("ABC Traders")    # "Debtor"
    """

    def __init__(self, masters: Masters):
        self.groups: dict[str, Group] = {g.name: g for g in masters.groups}
        self.ledgers: dict[str, MasterAccount] = {l.name: l for l in masters.ledgers}
        self._roots: dict[str, str] = {}

    def _chain(self, start: Optional[str]):
        """Yield group names from `start` upwards, stopping on a repeat."""
        visited = set()
        current = start
        while current and current not in visited:
            visited.add(current)
            yield current
            group = self.groups.get(current)
            if group is None:
                return
            current = group.parent

    def resolve_group(self, group_name: Optional[str]) -> str:
        """Terminal classification group for a group name, or UNKNOWN."""
        if not group_name:
            return UNKNOWN
        if group_name in self._roots:
            return self._roots[group_name]
        root = UNKNOWN
        for name in self._chain(group_name):
            if name in TERMINAL_GROUPS:
                root = name
                break
        self._roots[group_name] = root
        return root

    def root_group(self, ledger_name: str) -> str:
        ledger = self.ledgers.get(ledger_name)
        if ledger is None:
            return UNKNOWN
        return self.resolve_group(ledger.parent)

    def root_class(self, ledger_name: str) -> str:
        """Debtor, Creditor or Other."""
        return TERMINAL_GROUPS.get(self.root_group(ledger_name), "Other")

    def primary_group(self, ledger_name: str) -> Optional[str]:
        """Topmost ancestor reachable from the ledger's parent group."""
        ledger = self.ledgers.get(ledger_name)
        if ledger is None:
            return None
        top = None
        for name in self._chain(ledger.parent):
            top = name
        return top

    def party_ledgers(self) -> list[MasterAccount]:
        """Ledgers classified as Debtor or Creditor, in master order."""
        return [l for l in self.ledgers.values() if self.root_class(l.name) != "Other"]
