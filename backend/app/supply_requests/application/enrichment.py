from dataclasses import dataclass
from typing import List, Optional, Sequence

from app.supply_requests.application.ports import EquipmentCatalog
from app.supply_requests.domain.errors import InvalidReference, ValidationError
from app.supply_requests.domain.models import RequestedEquipmentItem

MAX_NOTES_LENGTH = 500


@dataclass(frozen=True)
class EquipmentItemInput:
    equipment_id: str
    quantity_requested: float
    estimated_unit_cost: Optional[float] = None
    notes: Optional[str] = None


def validate_item_inputs(items: Sequence[EquipmentItemInput]) -> None:
    if not items:
        raise ValidationError("At least one equipment item must be requested")

    seen = set()
    for item in items:
        if not item.equipment_id or not item.equipment_id.strip():
            raise ValidationError("Equipment ID is required")
        if item.equipment_id in seen:
            raise ValidationError(f"Equipment {item.equipment_id} is listed more than once")
        seen.add(item.equipment_id)
        if item.quantity_requested is None or item.quantity_requested <= 0:
            raise ValidationError("Quantity must be greater than 0")
        if item.estimated_unit_cost is not None and item.estimated_unit_cost < 0:
            raise ValidationError("Estimated unit cost must be non-negative")
        if item.notes and len(item.notes) > MAX_NOTES_LENGTH:
            raise ValidationError(f"Notes cannot exceed {MAX_NOTES_LENGTH} characters")


async def enrich_items(
    catalog: EquipmentCatalog,
    business_id: str,
    items: Sequence[EquipmentItemInput],
) -> List[RequestedEquipmentItem]:
    """Resolve every item against the catalog and price it.

    The caller's unit cost wins over the catalog default; all quantity
    counters start at zero.
    """
    validate_item_inputs(items)

    enriched = []
    for item in items:
        equipment = await catalog.get_equipment(business_id, item.equipment_id)
        if equipment is None:
            raise InvalidReference(
                f"Equipment with ID {item.equipment_id} not found or not available"
            )

        if item.estimated_unit_cost is not None:
            unit_cost = item.estimated_unit_cost
        else:
            unit_cost = equipment.default_unit_cost or 0.0

        enriched.append(
            RequestedEquipmentItem(
                equipment_id=item.equipment_id,
                equipment_name=equipment.name,
                equipment_category=equipment.category,
                unit_of_measure=equipment.unit_of_measure,
                quantity_requested=item.quantity_requested,
                estimated_unit_cost=unit_cost,
                estimated_total_cost=unit_cost * item.quantity_requested,
                notes=item.notes,
            )
        )
    return enriched
