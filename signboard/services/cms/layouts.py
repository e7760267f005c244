"""Menu layout templates and the portrait layout builder.

A template fixes a header region and a list of product slots on a
1080x1920 portrait canvas. Building a layout creates it in the CMS, adds
one text widget per region and publishes it.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Iterable

from signboard.services.cms.client import CmsClient, response_id


logger = logging.getLogger(__name__)

SCREEN_WIDTH = 1080
SCREEN_HEIGHT = 1920
RESOLUTION_NAME = "Portrait 1080x1920"

HEADER_WIDTH = 950
HEADER_HEIGHT = 250
GRID_COLS = 3
GRID_ROWS = 4

LIST_ITEM_COUNT = 6
LIST_HEADER_HEIGHT = 200
LIST_ITEM_WIDTH = 900


@dataclass(frozen=True)
class Region:
    top: int
    left: int
    width: int
    height: int

    def as_body(self) -> dict[str, int]:
        return {"width": self.width, "height": self.height, "top": self.top, "left": self.left}


@dataclass(frozen=True)
class LayoutTemplate:
    id: str
    name: str
    description: str
    header: Region
    slots: tuple[Region, ...]

    @property
    def max_products(self) -> int:
        return len(self.slots)


@dataclass(frozen=True)
class TemplateProduct:
    id: int
    name: str
    price: str


def grid_positions(cols: int, rows: int, *, top: int) -> tuple[Region, ...]:
    # Row-major cells filling the canvas below ``top``.
    cell_width = SCREEN_WIDTH // cols
    cell_height = (SCREEN_HEIGHT - top) // rows
    return tuple(
        Region(top=top + row * cell_height, left=col * cell_width, width=cell_width, height=cell_height)
        for row in range(rows)
        for col in range(cols)
    )


def list_positions(count: int, *, top: int, width: int) -> tuple[Region, ...]:
    item_height = (SCREEN_HEIGHT - top) // count
    left = (SCREEN_WIDTH - width) // 2
    return tuple(Region(top=top + i * item_height, left=left, width=width, height=item_height) for i in range(count))


TEMPLATES: tuple[LayoutTemplate, ...] = (
    LayoutTemplate(
        id="grid-3x4",
        name="3x4 Grid",
        description="Classic 3-column, 4-row product grid with header",
        header=Region(top=0, left=(SCREEN_WIDTH - HEADER_WIDTH) // 2, width=HEADER_WIDTH, height=HEADER_HEIGHT),
        slots=grid_positions(GRID_COLS, GRID_ROWS, top=HEADER_HEIGHT),
    ),
    LayoutTemplate(
        id="list-6",
        name="Simple List",
        description="Single-column list of up to 6 products",
        header=Region(
            top=0,
            left=(SCREEN_WIDTH - LIST_ITEM_WIDTH) // 2,
            width=LIST_ITEM_WIDTH,
            height=LIST_HEADER_HEIGHT,
        ),
        slots=list_positions(LIST_ITEM_COUNT, top=LIST_HEADER_HEIGHT, width=LIST_ITEM_WIDTH),
    ),
)


def get_template(template_id: str) -> LayoutTemplate | None:
    return next((template for template in TEMPLATES if template.id == template_id), None)


def parse_products(rows: Any) -> list[TemplateProduct]:
    """Read product rows of a business dataset; malformed rows are skipped."""
    if not isinstance(rows, list):
        return []
    products: list[TemplateProduct] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        try:
            row_id = int(row.get("id") or 0)
        except (TypeError, ValueError):
            continue
        products.append(
            TemplateProduct(id=row_id, name=str(row.get("name") or ""), price=str(row.get("price") or "0"))
        )
    return products


def select_products(products: Iterable[TemplateProduct], selected_ids: Iterable[int]) -> list[TemplateProduct]:
    # Dataset order wins over the order ids were submitted in.
    wanted = set(selected_ids)
    return [product for product in products if product.id in wanted]


async def get_or_create_resolution(client: CmsClient) -> int:
    resolutions = await client.get("resolution")
    for resolution in resolutions if isinstance(resolutions, list) else []:
        if not isinstance(resolution, dict):
            continue
        if resolution.get("width") == SCREEN_WIDTH and resolution.get("height") == SCREEN_HEIGHT:
            return response_id(resolution, "resolutionId")
    created = await client.post(
        "resolution",
        {"resolution": RESOLUTION_NAME, "width": SCREEN_WIDTH, "height": SCREEN_HEIGHT},
    )
    return response_id(created, "resolutionId")


async def _add_text_region(client: CmsClient, layout_id: int, region: Region, text: str) -> None:
    created = await client.post(f"region/{layout_id}", region.as_body())
    regions = created.get("regions") if isinstance(created, dict) else None
    if not regions:
        logger.warning("cms_region_without_id layout_id=%s", layout_id)
        return
    region_id = response_id(regions[0], "regionId")
    await client.post(f"playlist/widget/text/{region_id}", {"name": text})


async def build_layout_from_template(
    client: CmsClient,
    template: LayoutTemplate,
    layout_name: str,
    products: list[TemplateProduct],
) -> int:
    """Create, fill and publish a layout; returns the CMS layout id.

    Products beyond the template's slot count are dropped.
    """
    resolution_id = await get_or_create_resolution(client)
    layout = await client.post(
        "layout",
        {
            "name": layout_name,
            "description": f"Auto-generated from template {template.id}",
            "resolutionId": resolution_id,
        },
    )
    layout_id = response_id(layout, "layoutId")
    await _add_text_region(client, layout_id, template.header, layout_name)
    for slot, product in zip(template.slots, products):
        await _add_text_region(client, layout_id, slot, f"{product.name} - {product.price}")
    await client.put(f"layout/publish/{layout_id}", {})
    logger.info("cms_layout_built layout_id=%s template=%s products=%s", layout_id, template.id, len(products))
    return layout_id
