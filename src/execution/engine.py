"""
Execution Engine: TradingPlan -> orders on an ExchangeGateway.

Per plan, sequentially:
    1. connectivity check                  (fail -> ConnectivityError)
    2. account balance + ticker            (ticker fail -> fallback price)
    3. margin check                        (fail -> InsufficientMarginError)
    4. set leverage                        (fail -> warning only)
    5. primary market order                (fail -> OrderRejectedError)
    6. take-profit / stop-loss legs        (each fail -> ProtectiveLegError, recorded)

Errors never propagate out of ``execute_plan``; every outcome is an
ExecutionResult. Plans for different symbols run in parallel; plans for
one symbol run in order.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import Mapping, Sequence

from execution.gateway import ExchangeGateway
from execution.models import (
    AccountInfo,
    ExecutionResult,
    OrderRequest,
    OrderResponse,
    OrderType,
    VenuePosition,
)
from follow_core.errors import (
    ConnectivityError,
    FollowError,
    GatewayError,
    InsufficientMarginError,
    LeverageSetError,
    OrderRejectedError,
    ProtectiveLegError,
)
from follow_core.plans import TradingPlan
from follow_core.session import OrderRecord

logger = logging.getLogger("follow.engine")

DEFAULT_FALLBACK_PRICE = Decimal(1000)
DEFAULT_MARGIN_WARNING_RATIO = Decimal("0.8")


class ExecutionEngine:
    """Runs TradingPlans against one gateway."""

    def __init__(
        self,
        gateway: ExchangeGateway,
        *,
        fallback_price: Decimal | float = DEFAULT_FALLBACK_PRICE,
        margin_warning_ratio: Decimal | float = DEFAULT_MARGIN_WARNING_RATIO,
        max_workers: int = 4,
        dry_run: bool = False,
    ) -> None:
        self.gateway = gateway
        self.fallback_price = Decimal(str(fallback_price))
        self.margin_warning_ratio = Decimal(str(margin_warning_ratio))
        self.max_workers = max(1, max_workers)
        self.dry_run = dry_run

    # ----------------------------------------------------------
    # Batch
    # ----------------------------------------------------------

    def execute_plans(
        self,
        plans: Sequence[TradingPlan],
        *,
        orders: Mapping[str, OrderRecord] | None = None,
    ) -> list[ExecutionResult]:
        """Execute *plans*, returning results in plan order.

        Plans are grouped by symbol. Each group runs sequentially (a switch
        closes before it opens); groups run concurrently on a thread pool.

        Parameters
        ----------
        orders:
            Order ids this session placed earlier, by symbol. Exits use them
            to cancel now-orphaned protective orders.
        """
        if not plans:
            return []
        orders = orders or {}

        groups: OrderedDict[str, list[int]] = OrderedDict()
        for idx, plan in enumerate(plans):
            groups.setdefault(plan.symbol, []).append(idx)

        def run_group(indices: list[int]) -> list[tuple[int, ExecutionResult]]:
            out = []
            exit_failed = False
            for idx in indices:
                plan = plans[idx]
                if plan.is_entry and exit_failed:
                    result = ExecutionResult(
                        plan=plan,
                        success=False,
                        error=OrderRejectedError("Skipped: preceding close for this symbol failed"),
                        dry_run=self.dry_run,
                    )
                else:
                    result = self.execute_plan(plan, order_record=orders.get(plan.symbol))
                if not plan.is_entry and not result.success:
                    exit_failed = True
                out.append((idx, result))
            return out

        results: list[ExecutionResult | None] = [None] * len(plans)
        if len(groups) == 1:
            for idx, result in run_group(next(iter(groups.values()))):
                results[idx] = result
        else:
            workers = min(self.max_workers, len(groups))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="follow-exec") as pool:
                for chunk in pool.map(run_group, groups.values()):
                    for idx, result in chunk:
                        results[idx] = result
        return [r for r in results if r is not None]

    # ----------------------------------------------------------
    # Single plan
    # ----------------------------------------------------------

    def execute_plan(
        self,
        plan: TradingPlan,
        *,
        order_record: OrderRecord | None = None,
    ) -> ExecutionResult:
        """Execute one plan. Never raises."""
        result = ExecutionResult(plan=plan, success=False, dry_run=self.dry_run)
        result.warnings.extend(plan.warnings)
        try:
            if plan.is_entry:
                self._execute_entry(plan, result)
            else:
                self._execute_exit(plan, result, order_record)
        except FollowError as exc:
            result.success = False
            result.error = exc
        except Exception as exc:
            logger.exception("%s: unexpected error executing %s", plan.symbol, plan.plan_id)
            result.success = False
            result.error = FollowError(f"Unexpected error: {exc}")

        if result.error is not None:
            logger.error("%s: plan %s failed: %s", plan.symbol, plan.plan_id, result.error)
        return result

    def _check_connectivity(self) -> None:
        try:
            self.gateway.check_connectivity()
        except GatewayError as exc:
            raise ConnectivityError(f"Exchange unreachable: {exc}") from exc

    def _available_balance(self, plan: TradingPlan, result: ExecutionResult) -> Decimal | None:
        try:
            return self.gateway.get_account().available_balance
        except GatewayError as exc:
            logger.warning("%s: balance unavailable (%s); skipping margin check", plan.symbol, exc)
            result.warnings.append("Balance unavailable, margin check skipped")
            return None

    def _reference_price(self, plan: TradingPlan, result: ExecutionResult) -> Decimal:
        try:
            return self.gateway.get_ticker(plan.symbol).last_price
        except GatewayError as exc:
            logger.warning(
                "%s: ticker unavailable (%s); using fallback price %s", plan.symbol, exc, self.fallback_price,
            )
            result.warnings.append(f"Ticker unavailable, using fallback price {self.fallback_price}")
            return self.fallback_price

    def _execute_entry(self, plan: TradingPlan, result: ExecutionResult) -> None:
        # 1. connectivity
        self._check_connectivity()

        # 2. balance + price, both best effort
        available = self._available_balance(plan, result)
        price = self._reference_price(plan, result)

        # 3. margin, skipped when the balance is unknown
        leverage = max(plan.leverage, 1)
        required = plan.quantity * price / Decimal(leverage)
        result.required_margin = required
        if available is not None:
            if required > available:
                raise InsufficientMarginError(required, available)
            if available > 0:
                ratio = required / available
                if ratio > self.margin_warning_ratio:
                    msg = f"High margin usage: {ratio:.1%} of available balance"
                    logger.warning("%s: %s", plan.symbol, msg)
                    result.warnings.append(msg)

        if self.dry_run:
            logger.info(
                "%s: risk-only, would %s %s at ~%s (margin %.2f)",
                plan.symbol, plan.side.value, plan.quantity, price, required,
            )
            result.success = True
            return

        # 4. leverage, best effort
        try:
            self.gateway.set_leverage(plan.symbol, leverage)
        except GatewayError as exc:
            warning = LeverageSetError(f"Could not set leverage {leverage}x: {exc}")
            logger.warning("%s: %s", plan.symbol, warning)
            result.warnings.append(str(warning))

        # 5. primary order
        quantity = self.gateway.format_quantity(plan.symbol, plan.quantity)
        if quantity <= 0:
            raise OrderRejectedError(f"Quantity {plan.quantity} rounds to zero at venue precision")
        response = self._submit_primary(
            OrderRequest(
                symbol=plan.symbol,
                side=plan.side,
                type=OrderType.MARKET,
                quantity=quantity,
                leverage=leverage,
            )
        )
        self._record_fill(result, response, quantity)
        logger.info(
            "%s: %s %s filled %s @ %s (order %s)",
            plan.symbol, plan.signal_kind.value, plan.side.value,
            result.executed_quantity, result.avg_price, result.order_id,
        )

        # 6. protective legs, each independent of the other
        if plan.take_profit is not None:
            result.take_profit_order_id = self._submit_leg(
                plan, result, "take_profit", OrderType.TAKE_PROFIT_MARKET, plan.take_profit,
            )
        if plan.stop_loss is not None:
            result.stop_loss_order_id = self._submit_leg(
                plan, result, "stop_loss", OrderType.STOP_MARKET, plan.stop_loss,
            )

    def _execute_exit(
        self,
        plan: TradingPlan,
        result: ExecutionResult,
        order_record: OrderRecord | None,
    ) -> None:
        self._check_connectivity()
        price = self._reference_price(plan, result)

        # Close what the venue actually holds; plan quantity when it cannot say.
        venue_position, known = self._venue_position(plan.symbol)
        quantity = abs(venue_position.quantity) if venue_position is not None else plan.quantity

        if self.dry_run:
            logger.info("%s: risk-only, would close %s at ~%s", plan.symbol, quantity, price)
            result.success = True
            return

        if known and venue_position is None:
            msg = "No open position on venue; nothing to close"
            logger.info("%s: %s", plan.symbol, msg)
            result.warnings.append(msg)
            result.success = True
        else:
            quantity = self.gateway.format_quantity(plan.symbol, quantity)
            if quantity <= 0:
                raise OrderRejectedError(f"Close quantity {plan.quantity} rounds to zero at venue precision")
            response = self._submit_primary(
                OrderRequest(
                    symbol=plan.symbol,
                    side=plan.side,
                    type=OrderType.MARKET,
                    quantity=quantity,
                    leverage=plan.leverage,
                    reduce_only=True,
                )
            )
            self._record_fill(result, response, quantity)
            logger.info(
                "%s: %s closed %s @ %s (order %s)",
                plan.symbol, plan.signal_kind.value, result.executed_quantity, result.avg_price, result.order_id,
            )

        if order_record is not None:
            result.warnings.extend(self.cancel_protective_orders(order_record))

    def _venue_position(self, symbol: str) -> tuple[VenuePosition | None, bool]:
        """(position, known). ``known`` is False when the venue could not be asked."""
        try:
            positions = self.gateway.get_positions(symbol)
        except GatewayError as exc:
            logger.warning("%s: position query failed (%s); closing plan quantity", symbol, exc)
            return None, False
        return next((p for p in positions if p.symbol == symbol and p.quantity != 0), None), True

    def _submit_primary(self, request: OrderRequest) -> OrderResponse:
        try:
            return self.gateway.place_order(request)
        except GatewayError as exc:
            raise OrderRejectedError(f"Primary order rejected: {exc}") from exc

    @staticmethod
    def _record_fill(result: ExecutionResult, response: OrderResponse, requested: Decimal) -> None:
        result.success = True
        result.order_id = response.order_id
        result.avg_price = response.avg_price if response.avg_price > 0 else None
        if response.executed_qty > 0:
            result.executed_quantity = response.executed_qty
        else:
            result.executed_quantity = requested
            result.warnings.append(f"Venue reported no executed quantity (status {response.status})")

    def _submit_leg(
        self,
        plan: TradingPlan,
        result: ExecutionResult,
        leg: str,
        order_type: OrderType,
        trigger: Decimal,
    ) -> str | None:
        try:
            response = self.gateway.place_order(
                OrderRequest(
                    symbol=plan.symbol,
                    side=plan.side.opposite,
                    type=order_type,
                    quantity=self.gateway.format_quantity(plan.symbol, result.executed_quantity),
                    stop_price=self.gateway.format_price(plan.symbol, trigger),
                    leverage=plan.leverage,
                    reduce_only=True,
                )
            )
        except Exception as exc:
            error = ProtectiveLegError(leg, str(exc))
            logger.warning("%s: %s; primary order %s stays open", plan.symbol, error, result.order_id)
            result.leg_errors.append(error)
            return None
        logger.info("%s: %s leg at %s placed (order %s)", plan.symbol, leg, trigger, response.order_id)
        return response.order_id

    # ----------------------------------------------------------
    # Account / order helpers
    # ----------------------------------------------------------

    def account(self) -> AccountInfo:
        return self.gateway.get_account()

    def positions(self, symbol: str | None = None) -> list[VenuePosition]:
        return self.gateway.get_positions(symbol)

    def order_status(self, symbol: str, order_id: str) -> OrderResponse:
        return self.gateway.get_order(symbol, order_id)

    def open_orders(self, symbol: str | None = None) -> list[OrderResponse]:
        return self.gateway.get_open_orders(symbol)

    def cancel_protective_orders(self, record: OrderRecord) -> list[str]:
        """Cancel the TP/SL orders in *record*, best effort. Returns warnings."""
        warnings = []
        for order_id in record.protective_ids():
            try:
                self.gateway.cancel_order(record.symbol, order_id)
                logger.info("%s: cancelled protective order %s", record.symbol, order_id)
            except GatewayError as exc:
                msg = f"Could not cancel protective order {order_id}: {exc}"
                logger.warning("%s: %s", record.symbol, msg)
                warnings.append(msg)
        return warnings

    def cancel_all(self, symbol: str) -> None:
        self.gateway.cancel_all_orders(symbol)
        logger.info("%s: cancelled all open orders", symbol)


def order_records(results: Sequence[ExecutionResult]) -> dict[str, OrderRecord | None]:
    """Fold results into per-symbol order records for SessionState.with_orders.

    A filled entry records its order ids; a completed exit forgets the
    symbol. Risk-only and failed results change nothing.
    """
    records: dict[str, OrderRecord | None] = {}
    for result in results:
        if result.dry_run or not result.success:
            continue
        if result.plan.is_entry:
            records[result.symbol] = OrderRecord(
                symbol=result.symbol,
                entry_order_id=result.order_id,
                take_profit_order_id=result.take_profit_order_id,
                stop_loss_order_id=result.stop_loss_order_id,
            )
        else:
            records[result.symbol] = None
    return records
