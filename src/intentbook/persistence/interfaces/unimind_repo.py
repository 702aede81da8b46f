from __future__ import annotations

from typing import Protocol

from intentbook.domain.unimind_models import QuoteMetadata, UnimindParameters


class UnimindParametersRepoProtocol(Protocol):
    def get_by_pair(self, pair: str) -> UnimindParameters | None: ...

    def put(self, parameters: UnimindParameters) -> None: ...


class QuoteMetadataRepoProtocol(Protocol):
    def get_by_quote_id(self, quote_id: str) -> QuoteMetadata | None: ...

    def put(self, metadata: QuoteMetadata) -> None: ...
