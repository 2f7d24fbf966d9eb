from __future__ import annotations

import copy
import functools
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator, Mapping

from fastmcp import FastMCP
from fastmcp.tools import Tool
from fastmcp.tools.tool import ToolResult as TransportResult

from catalog import DEFAULT_SEARCH_LIMIT, MAX_SEARCH_LIMIT, CatalogError
from tools.context import AppContext
from tools.results import Failure, Success, ToolResult, render_result

ToolHandler = Callable[..., Awaitable[dict[str, Any]]]

_LOGGER = logging.getLogger("uai.mcp.tools")


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: Mapping[str, Any]
    handler: ToolHandler

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": copy.deepcopy(dict(self.input_schema)),
        }

    def accepted_arguments(self, arguments: Mapping[str, Any] | None) -> dict[str, Any]:
        properties = self.input_schema.get("properties") or {}
        accepted = {key: value for key, value in (arguments or {}).items() if key in properties}
        ignored = sorted(set(arguments or {}) - set(accepted))
        if ignored:
            _LOGGER.debug("ignoring unknown tool arguments", extra={"tool": self.name, "ignored": ignored})
        return accepted


class ToolRegistry:
    """Fixed name -> tool mapping, immutable once built."""

    def __init__(self, tools: list[ToolDefinition]) -> None:
        self._tools = {tool.name: tool for tool in tools}

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[dict[str, Any]]:
        return [tool.describe() for tool in self._tools.values()]

    def capabilities(self) -> dict[str, Any]:
        return {name: tool.describe() for name, tool in self._tools.items()}

    async def call(self, name: str, arguments: Mapping[str, Any] | None = None) -> dict[str, Any]:
        tool = self._tools.get(name)
        if tool is None:
            raise KeyError(name)
        return await tool.handler(**tool.accepted_arguments(arguments))


SEARCH_PRODUCTS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "termo_busca": {
            "type": "string",
            "description": "Termo para buscar (ex: coxinha, kibe, frango)",
        },
        "categoria_id": {
            "type": "string",
            "description": "ID da categoria para filtrar (opcional)",
        },
        "apenas_disponiveis": {
            "type": "boolean",
            "description": "Buscar apenas produtos disponíveis",
            "default": True,
        },
        "limite": {
            "type": "integer",
            "description": f"Número máximo de produtos (1-{MAX_SEARCH_LIMIT})",
            "minimum": 1,
            "maximum": MAX_SEARCH_LIMIT,
            "default": DEFAULT_SEARCH_LIMIT,
        },
    },
    "additionalProperties": False,
}

LIST_CATEGORIES_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "incluir_contagem": {
            "type": "boolean",
            "description": "Incluir contagem de produtos por categoria",
            "default": True,
        },
    },
    "additionalProperties": False,
}

STORE_INFO_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {},
    "additionalProperties": False,
}


def build_registry(context: AppContext) -> ToolRegistry:
    catalog = context.catalog

    async def _buscar_produtos(
        termo_busca: str | None = None,
        categoria_id: str | None = None,
        apenas_disponiveis: bool = True,
        limite: int = DEFAULT_SEARCH_LIMIT,
    ) -> dict[str, Any]:
        started = time.perf_counter()
        menu_url = catalog.menu_url()
        _LOGGER.debug(
            "searching products",
            extra={"termo_busca": termo_busca, "categoria_id": categoria_id, "limite": limite},
        )

        result: ToolResult
        try:
            produtos = await catalog.search_products(
                term=termo_busca,
                category_id=categoria_id,
                only_available=apenas_disponiveis is not False,
                limit=limite,
            )
        except CatalogError as exc:
            _LOGGER.error("buscar_produtos failed", extra={"tool": "buscar_produtos", "error": str(exc)})
            result = _search_failure(str(exc), menu_url)
        except Exception as exc:
            _LOGGER.exception("buscar_produtos crashed", extra={"tool": "buscar_produtos"})
            result = _search_failure(str(exc), menu_url)
        else:
            mensagem = f"Encontrados {len(produtos)} produto(s)" if produtos else "Nenhum produto encontrado"
            result = Success(
                {
                    "produtos": produtos,
                    "total": len(produtos),
                    "mensagem": mensagem,
                    "cardapio_completo": menu_url,
                }
            )

        payload = render_result(result, started)
        _LOGGER.info(
            "buscar_produtos finished",
            extra={"tool": "buscar_produtos", "total": payload["total"], "tempo": payload["tempo_execucao"]},
        )
        return payload

    async def _listar_categorias(incluir_contagem: bool = True) -> dict[str, Any]:
        started = time.perf_counter()
        _LOGGER.debug("listing categories", extra={"incluir_contagem": incluir_contagem})

        result: ToolResult
        try:
            categorias = await catalog.list_categories(include_counts=incluir_contagem is not False)
        except CatalogError as exc:
            _LOGGER.error("listar_categorias failed", extra={"tool": "listar_categorias", "error": str(exc)})
            result = _categories_failure(str(exc))
        except Exception as exc:
            _LOGGER.exception("listar_categorias crashed", extra={"tool": "listar_categorias"})
            result = _categories_failure(str(exc))
        else:
            result = Success({"categorias": categorias, "total": len(categorias)})

        return render_result(result, started)

    async def _informacoes_loja() -> dict[str, Any]:
        started = time.perf_counter()
        return render_result(Success(catalog.store_info()), started)

    return ToolRegistry(
        [
            ToolDefinition(
                name="buscar_produtos",
                description="Busca produtos no cardápio da UAI Salgados por nome, descrição ou categoria",
                input_schema=SEARCH_PRODUCTS_SCHEMA,
                handler=_buscar_produtos,
            ),
            ToolDefinition(
                name="listar_categorias",
                description="Lista todas as categorias de produtos disponíveis",
                input_schema=LIST_CATEGORIES_SCHEMA,
                handler=_listar_categorias,
            ),
            ToolDefinition(
                name="informacoes_loja",
                description="Obtém informações da loja UAI Salgados",
                input_schema=STORE_INFO_SCHEMA,
                handler=_informacoes_loja,
            ),
        ]
    )


def _search_failure(error: str, menu_url: str) -> Failure:
    return Failure(
        error,
        {
            "produtos": [],
            "total": 0,
            "mensagem": "Erro ao buscar produtos",
            "cardapio_completo": menu_url,
        },
    )


def _categories_failure(error: str) -> Failure:
    return Failure(error, {"categorias": [], "total": 0, "mensagem": "Erro ao listar categorias"})


class RegistryTool(Tool):
    """FastMCP tool that runs through `ToolRegistry.call`.

    The advertised parameters are the registry's own input schema, and the
    arguments reach the handler with the same filtering and coercion as a
    `tools/call` on `POST /`.
    """

    call: Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]

    async def run(self, arguments: dict[str, Any]) -> TransportResult:
        return TransportResult(structured_content=await self.call(arguments))


def register_tools(mcp: FastMCP, registry: ToolRegistry) -> ToolRegistry:
    """Expose the same tools through FastMCP's standard transports."""
    for tool in registry:
        mcp.add_tool(
            RegistryTool(
                name=tool.name,
                description=tool.description,
                parameters=copy.deepcopy(dict(tool.input_schema)),
                call=functools.partial(registry.call, tool.name),
            )
        )
    return registry


__all__ = [
    "LIST_CATEGORIES_SCHEMA",
    "RegistryTool",
    "SEARCH_PRODUCTS_SCHEMA",
    "STORE_INFO_SCHEMA",
    "ToolDefinition",
    "ToolHandler",
    "ToolRegistry",
    "build_registry",
    "register_tools",
]
