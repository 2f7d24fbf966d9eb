from __future__ import annotations

from typing import Any, Mapping, Sequence

from db import Database

Row = Mapping[str, Any]

_PRODUCT_COLUMNS = """
  id::text as id,
  nome,
  descricao,
  preco,
  imagem,
  disponivel,
  ordem,
  categoria_id::text as categoria_id
"""


class CatalogStore:
    """SQL boundary for the menu tables.

    Each method is exactly one round-trip to the database and returns raw
    rows; shaping and error wrapping happen in `catalog.CatalogService`.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    async def search_products(
        self,
        term: str = "",
        category_id: str = "",
        only_available: bool = True,
        limit: int = 10,
    ) -> list[Row]:
        params: list[Any] = []
        clauses: list[str] = []

        if only_available:
            clauses.append("disponivel = true")

        if category_id:
            params.append(category_id)
            clauses.append(f"categoria_id::text = ${len(params)}")

        if term:
            params.append(f"%{term}%")
            clauses.append(f"nome ilike ${len(params)}")

        where = f"where {' and '.join(clauses)}" if clauses else ""
        params.append(limit)
        sql = f"""
            select
            {_PRODUCT_COLUMNS}
            from produtos
            {where}
            order by ordem asc, nome asc
            limit ${len(params)}
        """
        return list(await self._db.pool.fetch(sql, *params))

    async def categories_by_ids(self, category_ids: Sequence[str]) -> list[Row]:
        if not category_ids:
            return []
        rows = await self._db.pool.fetch(
            """
            select id::text as id, nome
            from categorias
            where id::text = any($1::text[])
            """,
            list(category_ids),
        )
        return list(rows)

    async def list_categories(self, catalog_id: str) -> list[Row]:
        rows = await self._db.pool.fetch(
            """
            select id::text as id, nome, ordem
            from categorias
            where cardapio_id::text = $1
            order by ordem asc
            """,
            catalog_id,
        )
        return list(rows)

    async def count_available_products(self, category_ids: Sequence[str]) -> list[Row]:
        if not category_ids:
            return []
        rows = await self._db.pool.fetch(
            """
            select categoria_id::text as categoria_id, count(*)::int as total
            from produtos
            where disponivel = true
              and categoria_id::text = any($1::text[])
            group by categoria_id
            """,
            list(category_ids),
        )
        return list(rows)

    async def ping(self) -> None:
        await self._db.pool.fetchrow("select id from produtos limit 1")


__all__ = ["CatalogStore", "Row"]
