
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from cache import RankedCache
from notify import Subscription


@dataclass
class Account:
    id: int
    balance: int


def merge_account(current: Account, incoming: Account) -> None:
    current.balance = incoming.balance


def balance_rank(account: Account) -> Tuple[int, int]:
    # id breaks balance ties so two accounts never share a ranking slot
    return (account.balance, account.id)


class AccountCache:
    """
    Account-facing wrapper over RankedCache:
    accounts are keyed by id, merged by balance and ranked by balance.
    """
    def __init__(self, capacity: int, top_capacity: int = 3):
        self.cache = RankedCache(capacity, top_capacity,
                                 update=merge_account, rank_key=balance_rank)

    def put_account(self, account: Account) -> Account:
        return self.cache.put(account.id, account)

    def get_account_by_id(self, account_id: int) -> Optional[Account]:
        return self.cache.get(account_id)

    def get_account_by_id_hit_count(self) -> int:
        return self.cache.hits()

    def get_top_accounts_by_balance(self, n: int = 3) -> List[Account]:
        return self.cache.top_values(n)

    def subscribe_for_account_updates(self, observer: Callable[[Account], None]) -> Subscription:
        return self.cache.subscribe(observer)

    def stats(self):
        return self.cache.stats()
