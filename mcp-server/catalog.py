from __future__ import annotations

import copy
import logging
from typing import Any, Protocol, Sequence

from formatters import coerce_monetary, format_monetary_display, normalize_text
from store import Row

MAX_SEARCH_LIMIT = 50
DEFAULT_SEARCH_LIMIT = 10

_LOGGER = logging.getLogger("uai.mcp.catalog")

STORE_INFO: dict[str, Any] = {
    "loja": {
        "nome": "UAI Salgados Moema",
        "endereco": "Rua Juquis, 258 - Moema/SP",
        "referencia": "Próximo à estação Eucalipto do Metrô",
        "telefone": "11 94183-7616",
        "whatsapp": "https://wa.me/5511941837616",
    },
    "horarios": {
        "semana": "Segunda a Sábado: 09h às 20h",
        "domingo": "Domingos e Feriados: 10h às 18h",
    },
    "atendimento": {
        "area_cobertura": "São Paulo (capital) + ABC Paulista",
        "cidades_abc": ["São Bernardo", "Santo André", "São Caetano", "Diadema"],
    },
    "produtos": {
        "variedade": "Mais de 100 tipos de salgados congelados",
        "preparo": "Fácil preparo: direto do freezer ao forno/airfryer",
        "porcao_sugerida": "12 a 20 mini salgados por pessoa",
    },
}


class CatalogError(Exception):
    """A menu query failed; the message is safe to hand back to the caller."""


class StoreBackend(Protocol):
    async def search_products(
        self, term: str = "", category_id: str = "", only_available: bool = True, limit: int = 10
    ) -> list[Row]: ...

    async def categories_by_ids(self, category_ids: Sequence[str]) -> list[Row]: ...

    async def list_categories(self, catalog_id: str) -> list[Row]: ...

    async def count_available_products(self, category_ids: Sequence[str]) -> list[Row]: ...

    async def ping(self) -> None: ...


def clamp_limit(value: Any, default: int = DEFAULT_SEARCH_LIMIT) -> int:
    if isinstance(value, bool) or value is None:
        parsed = default
    elif isinstance(value, int):
        parsed = value
    else:
        try:
            parsed = int(float(str(value).strip()))
        except (ValueError, OverflowError):
            parsed = default
    return max(1, min(parsed, MAX_SEARCH_LIMIT))


class CatalogService:
    """Read-only projection of the menu tables."""

    def __init__(self, store: StoreBackend, catalog_id: str, menu_base_url: str) -> None:
        self._store = store
        self._catalog_id = catalog_id
        self._menu_base_url = menu_base_url

    @property
    def catalog_id(self) -> str:
        return self._catalog_id

    def menu_url(self, product_id: str | None = None) -> str:
        url = f"{self._menu_base_url}?id={self._catalog_id}"
        if product_id:
            url = f"{url}#produto-{product_id}"
        return url

    async def search_products(
        self,
        term: str | None = None,
        category_id: str | None = None,
        only_available: bool = True,
        limit: Any = DEFAULT_SEARCH_LIMIT,
    ) -> list[dict[str, Any]]:
        try:
            rows = await self._store.search_products(
                term=normalize_text(term).lower(),
                category_id=normalize_text(category_id),
                only_available=only_available,
                limit=clamp_limit(limit),
            )
        except Exception as exc:
            raise CatalogError(f"Erro na busca: {exc}") from exc

        if not rows:
            return []

        # Second round-trip for just the referenced categories, joined below by id.
        # Keeps the product query free of a join against the whole category table.
        referenced = list(dict.fromkeys(row["categoria_id"] for row in rows if row["categoria_id"]))
        try:
            category_rows = await self._store.categories_by_ids(referenced)
        except Exception as exc:
            raise CatalogError(f"Erro ao buscar categorias dos produtos: {exc}") from exc
        categories = {row["id"]: row for row in category_rows}

        return [self._format_product(row, categories.get(row["categoria_id"])) for row in rows]

    def _format_product(self, row: Row, category: Row | None) -> dict[str, Any]:
        return {
            "id": row["id"],
            "nome": normalize_text(row["nome"]),
            "descricao": normalize_text(row["descricao"]),
            "preco": coerce_monetary(row["preco"]),
            "preco_formatado": format_monetary_display(row["preco"]),
            "imagem": normalize_text(row["imagem"]),
            "disponivel": bool(row["disponivel"]),
            "categoria": (
                {"id": category["id"], "nome": normalize_text(category["nome"])} if category is not None else None
            ),
            "url_compra": self.menu_url(row["id"]),
        }

    async def list_categories(self, include_counts: bool = True) -> list[dict[str, Any]]:
        try:
            rows = await self._store.list_categories(self._catalog_id)
        except Exception as exc:
            raise CatalogError(f"Erro ao buscar categorias: {exc}") from exc

        categories = [
            {
                "id": row["id"],
                "nome": normalize_text(row["nome"]),
                "ordem": row["ordem"],
                "produtos_count": 0,
            }
            for row in rows
        ]
        if not include_counts or not categories:
            return categories

        try:
            counts = await self._count_products([category["id"] for category in categories])
        except Exception as exc:
            # Counts are an enrichment; the listing itself still succeeds.
            _LOGGER.warning("product count failed", extra={"error": str(exc)})
            return categories

        for category in categories:
            category["produtos_count"] = counts.get(category["id"], 0)
        return categories

    async def _count_products(self, category_ids: Sequence[str]) -> dict[str, int]:
        rows = await self._store.count_available_products(category_ids)
        return {row["categoria_id"]: int(row["total"] or 0) for row in rows}

    def store_info(self) -> dict[str, Any]:
        info = copy.deepcopy(STORE_INFO)
        info["cardapio_online"] = self.menu_url()
        return info

    async def ping(self) -> None:
        await self._store.ping()


__all__ = [
    "CatalogError",
    "CatalogService",
    "DEFAULT_SEARCH_LIMIT",
    "MAX_SEARCH_LIMIT",
    "STORE_INFO",
    "StoreBackend",
    "clamp_limit",
]
