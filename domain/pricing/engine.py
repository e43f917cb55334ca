"""
Pricing engine.

Pure and deterministic: no I/O, no clocks, no shared mutable state. The same
items, context and policy always produce the same PricingResult, so it is safe
to call from any number of concurrent request handlers or reconcilers.

Order of application:
    base price -> seller discount -> volume tier -> coupon -> IVA -> shipping

final_total == subtotal_with_discounts - coupon_discount_amount + iva_amount + shipping_cost
holds exactly, because every term is quantized once from unrounded sums and
the total is the plain sum of the quantized terms.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional, Sequence

from domain.discount.entity import CouponRejectionReason
from domain.pricing.value_objects import (
    HUNDRED,
    ZERO,
    CartLineItem,
    CouponRejection,
    DiscountContext,
    ItemBreakdown,
    PricingPolicy,
    PricingResult,
    SellerShippingShare,
    ShippingBreakdown,
    VolumeTier,
    quantize_money,
)


class PricingEngine:
    def __init__(self, policy: PricingPolicy) -> None:
        self.policy = policy
        # highest threshold first; equal thresholds resolve to the larger discount
        self._tiers: tuple[VolumeTier, ...] = tuple(
            sorted(policy.volume_tiers, key=lambda t: (t.min_quantity, t.percentage), reverse=True)
        )

    def volume_discount_for(self, quantity: int) -> Decimal:
        for tier in self._tiers:
            if quantity >= tier.min_quantity:
                return tier.percentage
        return ZERO

    def compute_totals(self, items: Sequence[CartLineItem], context: DiscountContext) -> PricingResult:
        raw_original = ZERO
        raw_with_discounts = ZERO
        raw_seller_savings = ZERO
        breakdown: list[ItemBreakdown] = []

        for item in items:
            seller_unit = item.unit_price * (HUNDRED - item.seller_discount_pct) / HUNDRED
            volume_pct = self.volume_discount_for(item.quantity)
            final_unit = seller_unit * (HUNDRED - volume_pct) / HUNDRED

            line_original = item.unit_price * item.quantity
            line_subtotal = final_unit * item.quantity
            line_seller_savings = (item.unit_price - seller_unit) * item.quantity
            line_volume_savings = (seller_unit - final_unit) * item.quantity

            raw_original += line_original
            raw_with_discounts += line_subtotal
            raw_seller_savings += line_seller_savings

            breakdown.append(
                ItemBreakdown(
                    product_id=item.product_id,
                    seller_id=item.seller_id,
                    quantity=item.quantity,
                    unit_price=quantize_money(item.unit_price),
                    seller_discount_pct=item.seller_discount_pct,
                    volume_discount_pct=volume_pct,
                    final_unit_price=quantize_money(final_unit),
                    subtotal=quantize_money(line_subtotal),
                    seller_savings=quantize_money(line_seller_savings),
                    volume_savings=quantize_money(line_volume_savings),
                )
            )

        subtotal_original = quantize_money(raw_original)
        subtotal_with_discounts = quantize_money(raw_with_discounts)
        seller_discount_total = quantize_money(raw_seller_savings)
        # derived by difference so original - seller - volume == with_discounts exactly
        volume_discount_total = subtotal_original - seller_discount_total - subtotal_with_discounts

        coupon_pct, coupon_amount, rejection = self._apply_coupon(items, context, raw_with_discounts)
        coupon_amount = min(coupon_amount, subtotal_with_discounts)

        discounted = subtotal_with_discounts - coupon_amount
        iva_amount = quantize_money(discounted * self.policy.tax_rate / HUNDRED)
        shipping = self._shipping(items, discounted)
        final_total = subtotal_with_discounts - coupon_amount + iva_amount + shipping.total

        return PricingResult(
            currency=self.policy.currency,
            subtotal_original=subtotal_original,
            subtotal_with_discounts=subtotal_with_discounts,
            seller_discount_total=seller_discount_total,
            volume_discount_total=volume_discount_total,
            coupon_code=context.coupon.code if context.coupon is not None and rejection is None else None,
            coupon_discount_percentage=coupon_pct,
            coupon_discount_amount=coupon_amount,
            iva_rate=self.policy.tax_rate,
            iva_amount=iva_amount,
            shipping_cost=shipping.total,
            shipping_breakdown=shipping,
            final_total=final_total,
            items=tuple(breakdown),
            coupon_rejection=rejection,
        )

    def _apply_coupon(
        self,
        items: Sequence[CartLineItem],
        context: DiscountContext,
        raw_with_discounts: Decimal,
    ) -> tuple[Decimal, Decimal, Optional[CouponRejection]]:
        requested = (context.coupon_code or "").strip().upper()
        if not requested:
            return ZERO, ZERO, None

        coupon = context.coupon
        if coupon is None or coupon.code != requested:
            return ZERO, ZERO, CouponRejection(requested, CouponRejectionReason.INVALID)

        reason = coupon.check_usable(context.user_id, context.now)
        if reason is not None:
            return ZERO, ZERO, CouponRejection(requested, reason)

        if coupon.is_scoped:
            eligible = [i for i in items if coupon.applies_to(i.product_id, i.seller_id)]
            if not eligible:
                return ZERO, ZERO, CouponRejection(requested, CouponRejectionReason.NOT_APPLICABLE)
            base = ZERO
            for item in eligible:
                seller_unit = item.unit_price * (HUNDRED - item.seller_discount_pct) / HUNDRED
                volume_pct = self.volume_discount_for(item.quantity)
                base += seller_unit * (HUNDRED - volume_pct) / HUNDRED * item.quantity
        else:
            base = raw_with_discounts

        return coupon.percentage, quantize_money(base * coupon.percentage / HUNDRED), None

    def _shipping(self, items: Sequence[CartLineItem], discounted: Decimal) -> ShippingBreakdown:
        cfg = self.policy.shipping
        sellers: list[str] = []
        for item in items:
            if item.seller_id not in sellers:
                sellers.append(item.seller_id)
        seller_count = len(sellers)

        cost = ZERO
        if items and cfg.enabled:
            free = cfg.free_threshold is not None and discounted >= cfg.free_threshold
            cost = ZERO if free else quantize_money(cfg.default_cost)

        if seller_count == 0:
            pct = ZERO
        elif seller_count == 1:
            pct = cfg.single_seller_pct
        else:
            # never credit sellers more than the whole shipping cost
            pct = min(cfg.multi_seller_pct, HUNDRED / seller_count)

        share = quantize_money(cost * pct / HUNDRED)
        shares = tuple(SellerShippingShare(seller_id=s, amount=share) for s in sorted(sellers))
        seller_amount = share * seller_count
        return ShippingBreakdown(
            total=cost,
            seller_count=seller_count,
            seller_percentage=pct,
            shares=shares,
            seller_amount=seller_amount,
            platform_amount=cost - seller_amount,
        )
