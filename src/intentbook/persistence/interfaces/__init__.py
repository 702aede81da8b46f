from intentbook.persistence.interfaces.orders_repo import (
    OrderEvent,
    OrderEventsRepoProtocol,
    OrderPage,
    OrdersRepoProtocol,
)
from intentbook.persistence.interfaces.unimind_repo import (
    QuoteMetadataRepoProtocol,
    UnimindParametersRepoProtocol,
)

__all__ = [
    "OrderEvent",
    "OrderEventsRepoProtocol",
    "OrderPage",
    "OrdersRepoProtocol",
    "QuoteMetadataRepoProtocol",
    "UnimindParametersRepoProtocol",
]
