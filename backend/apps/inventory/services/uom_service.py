from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from apps.inventory.exceptions import UnsupportedUnit, ValidationError
from apps.inventory.models import Item, ItemUOMConversion

QTY_QUANTUM = Decimal('0.000001')
MONEY_QUANTUM = Decimal('0.01')
RATE_QUANTUM = Decimal('0.0001')


def quantize_qty(value) -> Decimal:
    return Decimal(value).quantize(QTY_QUANTUM, rounding=ROUND_HALF_UP)


def quantize_money(value) -> Decimal:
    return Decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def quantize_rate(value) -> Decimal:
    return Decimal(value).quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)


def line_amounts(base_quantity: Decimal, rate_per_unit: Decimal, gst_percentage: Decimal) -> dict:
    """Base, GST and total amounts of ``base_quantity`` priced at ``rate_per_unit``."""
    base_amount = quantize_money(Decimal(base_quantity) * Decimal(rate_per_unit))
    gst_amount = quantize_money(base_amount * Decimal(gst_percentage or 0) / Decimal('100'))
    return {
        'base_amount': base_amount,
        'gst_amount': gst_amount,
        'total_amount': base_amount + gst_amount,
    }


class UoMConversionService:
    """Converts quantities between an item's units and its base unit."""

    @staticmethod
    def to_base(*, item: Item, quantity, uom: Optional[str] = None) -> Decimal:
        """
        Express ``quantity`` of ``uom`` in the item's base unit.

        A direct ``uom -> base`` record multiplies by its factor; otherwise a
        ``base -> uom`` record divides by its factor.

        Raises:
            UnsupportedUnit: no record links ``uom`` with the base unit
            ValidationError: the base quantity needs more than six decimals
        """
        qty = UoMConversionService._as_quantity(quantity)
        if not uom or uom == item.base_uom:
            return UoMConversionService._exact_base(item, qty, qty, uom or item.base_uom)

        direct, reverse = UoMConversionService._resolve_conversion(item=item, uom=uom)
        if direct is not None:
            return UoMConversionService._exact_base(item, qty * direct.conversion_factor, qty, uom)
        if reverse is not None:
            return UoMConversionService._exact_base(item, qty / reverse.conversion_factor, qty, uom)
        raise UnsupportedUnit(item=item, unit=uom)

    @staticmethod
    def from_base(*, item: Item, quantity, uom: Optional[str] = None) -> Decimal:
        """Express a base-unit ``quantity`` in ``uom``. Inverse of :meth:`to_base`."""
        qty = UoMConversionService._as_quantity(quantity)
        if not uom or uom == item.base_uom:
            return quantize_qty(qty)

        direct, reverse = UoMConversionService._resolve_conversion(item=item, uom=uom)
        if direct is not None:
            return quantize_qty(qty / direct.conversion_factor)
        if reverse is not None:
            return quantize_qty(qty * reverse.conversion_factor)
        raise UnsupportedUnit(item=item, unit=uom)

    @staticmethod
    def convert_quantity(*, item: Item, quantity, from_uom: str, to_uom: str) -> Decimal:
        """Convert between two non-base units by way of the base unit."""
        if from_uom == to_uom:
            return quantize_qty(UoMConversionService._as_quantity(quantity))
        base_qty = UoMConversionService.to_base(item=item, quantity=quantity, uom=from_uom)
        return UoMConversionService.from_base(item=item, quantity=base_qty, uom=to_uom)

    @staticmethod
    def supported_units(item: Item) -> list[str]:
        units = {item.base_uom}
        for from_uom, to_uom in item.uom_conversions.values_list('from_uom', 'to_uom'):
            units.update((from_uom, to_uom))
        return sorted(units)

    @staticmethod
    def _resolve_conversion(*, item: Item, uom: str):
        direct = reverse = None
        for conversion in ItemUOMConversion.objects.filter(item=item):
            if conversion.from_uom == uom and conversion.to_uom == item.base_uom:
                direct = conversion
            elif conversion.from_uom == item.base_uom and conversion.to_uom == uom:
                reverse = conversion
        return direct, reverse

    @staticmethod
    def _as_quantity(quantity) -> Decimal:
        if quantity is None:
            raise ValidationError("Quantity is required.")
        qty = Decimal(str(quantity))
        if qty < 0:
            raise ValidationError("Quantity cannot be negative.", quantity=qty)
        return qty

    @staticmethod
    def _exact_base(item: Item, base_qty: Decimal, quantity: Decimal, uom: str) -> Decimal:
        stored = quantize_qty(base_qty)
        if stored != base_qty:
            raise ValidationError(
                f"{quantity} {uom} of {item.code} cannot be stored exactly in {item.base_uom}.",
                item_id=item.pk,
                quantity=quantity,
                uom=uom,
            )
        return stored
