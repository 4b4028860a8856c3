"""
Event processor: read and parse JSONL pool event data

One JSON object per line. Field names follow the usual indexer export:

    {"eventType": "Swap", "blockTimestamp": 1700000000, "logIndex": 3,
     "amountIn": "1000000", "zeroForOne": true, "amountOut": "123"}

Swaps may instead carry signed pool deltas (amount0/amount1, positive means
paid into the pool). Large integers may be strings.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from .events import (
    AddLiquidityEvent,
    CollectFeesEvent,
    PoolEvent,
    RemoveLiquidityEvent,
    SwapDirection,
    SwapEvent,
    make_position_id,
)

logger = logging.getLogger(__name__)

EVENT_TYPE_ALIASES = {
    'Swap': 'Swap',
    'AddLiquidity': 'AddLiquidity',
    'IncreaseLiquidity': 'AddLiquidity',
    'Mint': 'AddLiquidity',
    'RemoveLiquidity': 'RemoveLiquidity',
    'DecreaseLiquidity': 'RemoveLiquidity',
    'Burn': 'RemoveLiquidity',
    'CollectFees': 'CollectFees',
    'Collect': 'CollectFees',
}


class EventParseError(ValueError):
    """A record could not be turned into a pool event"""


def _int(record: Dict[str, Any], *keys: str, default: Optional[int] = None) -> Optional[int]:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return int(value)
    return default


def _required_int(record: Dict[str, Any], *keys: str) -> int:
    value = _int(record, *keys)
    if value is None:
        raise EventParseError(f"missing field {keys[0]!r}")
    return value


def _position_id(record: Dict[str, Any]) -> str:
    position_id = record.get('positionId', record.get('tokenId'))
    if position_id is not None:
        return str(position_id)
    if 'tickLower' in record and 'tickUpper' in record:
        return make_position_id(
            str(record.get('owner', '')), int(record['tickLower']), int(record['tickUpper'])
        )
    raise EventParseError("missing positionId and owner/tickLower/tickUpper")


def _parse_swap(record: Dict[str, Any], common: Dict[str, Any]) -> SwapEvent:
    price_limit = _int(record, 'sqrtPriceLimitX96', 'priceLimit')

    if 'amountIn' in record:
        if 'zeroForOne' in record:
            zero_for_one = bool(record['zeroForOne'])
        elif 'direction' in record:
            zero_for_one = SwapDirection(record['direction']).zero_for_one
        else:
            raise EventParseError("swap without zeroForOne/direction")
        direction = SwapDirection.ZERO_FOR_ONE if zero_for_one else SwapDirection.ONE_FOR_ZERO
        return SwapEvent(
            amount_in=_required_int(record, 'amountIn'),
            direction=direction,
            price_limit=price_limit,
            amount_out=_int(record, 'amountOut'),
            **common
        )

    # signed pool deltas: the positive side is the input
    amount0 = _required_int(record, 'amount0')
    amount1 = _required_int(record, 'amount1')
    if amount0 > 0:
        return SwapEvent(amount0, SwapDirection.ZERO_FOR_ONE, price_limit, max(-amount1, 0), **common)
    if amount1 > 0:
        return SwapEvent(amount1, SwapDirection.ONE_FOR_ZERO, price_limit, max(-amount0, 0), **common)
    raise EventParseError("swap with no positive input amount")


def parse_event(record: Dict[str, Any]) -> PoolEvent:
    """
    Convert one raw record into a typed event.

    Raises:
        EventParseError: unknown type or missing fields
    """
    kind = EVENT_TYPE_ALIASES.get(record.get('eventType'))
    if kind is None:
        raise EventParseError(f"unknown eventType {record.get('eventType')!r}")

    common = {
        'timestamp': _int(record, 'blockTimestamp', 'timestamp', default=0),
        'sequence': _int(record, 'logIndex', 'sequence', default=0),
        'synthetic': bool(record.get('synthetic', False)),
    }

    try:
        if kind == 'Swap':
            return _parse_swap(record, common)
        if kind == 'AddLiquidity':
            owner = str(record.get('owner', ''))
            return AddLiquidityEvent(
                lower_tick=_required_int(record, 'tickLower'),
                upper_tick=_required_int(record, 'tickUpper'),
                liquidity_delta=_required_int(record, 'liquidity', 'amount'),
                position_id=str(record.get('positionId', record.get('tokenId', '')) or ''),
                owner=owner,
                **common
            )
        if kind == 'RemoveLiquidity':
            return RemoveLiquidityEvent(
                position_id=_position_id(record),
                liquidity_delta=_required_int(record, 'liquidity', 'amount'),
                **common
            )
        return CollectFeesEvent(position_id=_position_id(record), **common)
    except (TypeError, ValueError) as e:
        if isinstance(e, EventParseError):
            raise
        raise EventParseError(f"bad {kind} record: {e}") from e


def event_to_record(event: PoolEvent) -> Dict[str, Any]:
    """Inverse of parse_event, using the canonical field names"""
    record: Dict[str, Any] = {
        'blockTimestamp': event.timestamp,
        'logIndex': event.sequence,
    }
    if event.synthetic:
        record['synthetic'] = True

    if isinstance(event, SwapEvent):
        record['eventType'] = 'Swap'
        record['amountIn'] = str(event.amount_in)
        record['zeroForOne'] = event.direction.zero_for_one
        if event.price_limit is not None:
            record['sqrtPriceLimitX96'] = str(event.price_limit)
        if event.amount_out is not None:
            record['amountOut'] = str(event.amount_out)
    elif isinstance(event, AddLiquidityEvent):
        record['eventType'] = 'AddLiquidity'
        record['tickLower'] = event.lower_tick
        record['tickUpper'] = event.upper_tick
        record['liquidity'] = str(event.liquidity_delta)
        record['positionId'] = event.position_id
        record['owner'] = event.owner
    elif isinstance(event, RemoveLiquidityEvent):
        record['eventType'] = 'RemoveLiquidity'
        record['positionId'] = event.position_id
        record['liquidity'] = str(event.liquidity_delta)
    elif isinstance(event, CollectFeesEvent):
        record['eventType'] = 'CollectFees'
        record['positionId'] = event.position_id
    else:
        raise TypeError(f"Unknown event type: {type(event).__name__}")
    return record


class EventProcessor:
    """Pool event data from a JSONL file; every iteration re-reads the file"""

    def __init__(self, file_path: str):
        self.file_path = Path(file_path)
        if not self.file_path.exists():
            raise FileNotFoundError(f"Data file not found: {file_path}")
        self.skipped = 0

    def read_records(self) -> Iterator[Dict[str, Any]]:
        """Raw records (generator)"""
        with open(self.file_path, 'r', encoding='utf-8') as f:
            for line_number, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError as e:
                    self.skipped += 1
                    logger.warning("Error parsing line %d: %s", line_number, e)

    def read_events(self) -> Iterator[PoolEvent]:
        """Typed events in file order; unparseable records are logged and skipped"""
        self.skipped = 0
        for record in self.read_records():
            try:
                yield parse_event(record)
            except EventParseError as e:
                self.skipped += 1
                logger.warning("Skipping record: %s", e)

    def __iter__(self) -> Iterator[PoolEvent]:
        return self.read_events()

    def get_events_by_type(self, event_type: str) -> Iterator[PoolEvent]:
        """Filter by eventType (aliases accepted)"""
        kind = EVENT_TYPE_ALIASES.get(event_type, event_type)
        classes = {
            'Swap': SwapEvent,
            'AddLiquidity': AddLiquidityEvent,
            'RemoveLiquidity': RemoveLiquidityEvent,
            'CollectFees': CollectFeesEvent,
        }
        cls = classes.get(kind)
        if cls is None:
            return
        for event in self.read_events():
            if isinstance(event, cls):
                yield event

    def get_events_in_range(
        self,
        start_timestamp: Optional[int] = None,
        end_timestamp: Optional[int] = None
    ) -> Iterator[PoolEvent]:
        """Events with start_timestamp <= timestamp <= end_timestamp"""
        for event in self.read_events():
            if start_timestamp is not None and event.timestamp < start_timestamp:
                continue
            if end_timestamp is not None and event.timestamp > end_timestamp:
                continue
            yield event

    def get_event_statistics(self) -> Dict[str, Any]:
        """Event counts by type and timestamp range"""
        stats = {
            'total': 0,
            'by_type': {},
            'timestamp_range': {'min': None, 'max': None},
            'skipped': 0,
        }

        for event in self.read_events():
            stats['total'] += 1

            event_type = type(event).__name__
            stats['by_type'][event_type] = stats['by_type'].get(event_type, 0) + 1

            timestamp = event.timestamp
            if stats['timestamp_range']['min'] is None or timestamp < stats['timestamp_range']['min']:
                stats['timestamp_range']['min'] = timestamp
            if stats['timestamp_range']['max'] is None or timestamp > stats['timestamp_range']['max']:
                stats['timestamp_range']['max'] = timestamp

        stats['skipped'] = self.skipped
        return stats
