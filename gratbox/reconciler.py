"""Desired-vs-current reconciliation.

`plan_operations` is a pure function: given the desired records (from CSV) and the current
remote records it returns one Operation per key, sorted by key, so planning the same inputs
twice yields the same sequence. `Reconciler.apply` executes a plan one operation at a time and
always returns exactly one OutcomeRow per operation; a failing item is recorded and the run
moves on.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .models import DesiredRecord, Operation, OperationKind, OutcomeRow, RemoteRecord, Result, SyncMode

logger = logging.getLogger(__name__)


KeyNormalizer = Callable[[str], str]

# Graph timestamps carry up to 7 fractional digits and a "Z" suffix
_FRACTION = re.compile(r"\.(\d+)")
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _fold(key: str) -> str:
    return key.strip().casefold()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp as returned by Graph. Returns None if it cannot be parsed."""
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00").replace("z", "+00:00")
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparseable timestamp %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _age_order(record: RemoteRecord) -> Tuple[int, datetime, str]:
    # Oldest first; records without a usable creation timestamp sort after dated ones
    created = parse_timestamp(record.created)
    return (0 if created else 1, created or _EPOCH, record.remote_id or "")


def _changed(desired: DesiredRecord, current: RemoteRecord, compare_fields: Sequence[str]) -> Tuple[Dict[str, str], Dict[str, str]]:
    before, after = {}, {}
    for name in compare_fields:
        if name not in desired.attributes:
            continue
        want = desired.attributes[name] or ""
        have = current.attributes.get(name) or ""
        if want != have:
            before[name] = have
            after[name] = want
    return before, after


def plan_operations(
    desired: Iterable[DesiredRecord],
    current: Iterable[RemoteRecord],
    mode: SyncMode = SyncMode.ADD_ONLY,
    compare_fields: Sequence[str] = (),
    is_managed: Optional[Callable[[RemoteRecord], bool]] = None,
    normalize_key: Optional[KeyNormalizer] = None,
) -> List[Operation]:
    """Compute the operations that move `current` to `desired`.

    Args:
        desired: Records wanted remotely. Keys are matched case-insensitively.
        current: Live remote records, possibly with several records per key.
        mode: AddOnly never removes; SyncExact removes managed remote-only records and
            extraneous duplicates.
        compare_fields: Attribute names whose difference produces an Update.
        is_managed: Predicate deciding whether a remote-only record is ours to remove.
        normalize_key: Maps a key to its matching form; defaults to trimmed case-folding.
    Returns:
        Operations sorted by key. Within a key the canonical record's operation comes first,
        followed by one operation per duplicate.
    """
    mode = SyncMode(mode)
    fold = normalize_key or _fold
    desired_by_key: Dict[str, DesiredRecord] = {}
    for record in desired:
        desired_by_key.setdefault(fold(record.key), record)

    current_by_key: Dict[str, List[RemoteRecord]] = {}
    for record in current:
        current_by_key.setdefault(fold(record.key), []).append(record)

    operations: List[Operation] = []
    for folded in sorted(set(desired_by_key) | set(current_by_key)):
        want = desired_by_key.get(folded)
        matches = sorted(current_by_key.get(folded, []), key=_age_order)

        if want is not None and not matches:
            operations.append(Operation(OperationKind.ADD, want.key, after=dict(want.attributes)))
            continue

        canonical, duplicates = matches[0], matches[1:]
        if want is not None:
            before, after = _changed(want, canonical, compare_fields)
            kind = OperationKind.UPDATE if after else OperationKind.NOOP
            operations.append(
                Operation(kind, want.key, before=before, after=after, remote_id=canonical.remote_id, etag=canonical.etag)
            )
        elif mode is SyncMode.SYNC_EXACT and (is_managed is None or is_managed(canonical)):
            operations.append(
                Operation(
                    OperationKind.REMOVE,
                    canonical.key,
                    before=dict(canonical.attributes),
                    remote_id=canonical.remote_id,
                    etag=canonical.etag,
                )
            )
        else:
            operations.append(Operation(OperationKind.NOOP, canonical.key, remote_id=canonical.remote_id))

        for dup in duplicates:
            detail = f"duplicate of {canonical.remote_id}"
            logger.warning("Key %s has duplicate remote record %s (%s)", dup.key, dup.remote_id, detail)
            if mode is SyncMode.SYNC_EXACT:
                operations.append(
                    Operation(
                        OperationKind.REMOVE,
                        dup.key,
                        before=dict(dup.attributes),
                        remote_id=dup.remote_id,
                        detail=detail,
                        etag=dup.etag,
                    )
                )
            else:
                operations.append(Operation(OperationKind.NOOP, dup.key, remote_id=dup.remote_id, detail=detail))
    return operations


class Reconciler:
    """Plans and applies operations against one reconcile target.

    The target supplies `fetch_current()`, `add(op)`, `update(op)`, `remove(op)`, the
    `compare_fields` it understands, an `is_managed(record)` predicate and `describe(op)` for
    extra report columns, and optionally `normalize_key(key)` for matching. Remote calls made
    by the target go through the Graph client and therefore through the backoff caller.
    """

    def __init__(self, target, mode: SyncMode = SyncMode.ADD_ONLY, dry_run: bool = False):
        self.target = target
        self.mode = SyncMode(mode)
        self.dry_run = dry_run

    def plan(self, desired: Sequence[DesiredRecord], current: Optional[Sequence[RemoteRecord]] = None) -> List[Operation]:
        if current is None:
            current = self.target.fetch_current()
        operations = plan_operations(
            desired,
            current,
            self.mode,
            compare_fields=self.target.compare_fields,
            is_managed=self.target.is_managed,
            normalize_key=getattr(self.target, "normalize_key", None),
        )
        counts: Dict[str, int] = {}
        for op in operations:
            counts[op.kind.value] = counts.get(op.kind.value, 0) + 1
        logger.info("Planned %d operation(s) in %s mode: %s", len(operations), self.mode.value, counts)
        return operations

    def apply(self, operations: Sequence[Operation]) -> List[OutcomeRow]:
        rows: List[OutcomeRow] = []
        handlers = {
            OperationKind.ADD: self.target.add,
            OperationKind.UPDATE: self.target.update,
            OperationKind.REMOVE: self.target.remove,
        }
        for index, op in enumerate(operations, start=1):
            extra = self._describe(op)
            if op.kind is OperationKind.NOOP:
                rows.append(OutcomeRow(op.key, op.kind.value, Result.SKIPPED, extra=extra))
                continue
            if self.dry_run:
                rows.append(OutcomeRow(op.key, op.kind.value, Result.WOULD_APPLY, extra=extra))
                continue
            try:
                handlers[op.kind](op)
            except Exception as exc:
                # One bad item must not stop the batch; the error lands in the report
                logger.error("[%d/%d] %s %s failed: %s", index, len(operations), op.kind.value, op.key, exc)
                logger.debug("Failure detail", exc_info=True)
                rows.append(OutcomeRow(op.key, op.kind.value, Result.ERROR, str(exc), extra))
            else:
                logger.info("[%d/%d] %s %s", index, len(operations), op.kind.value, op.key)
                rows.append(OutcomeRow(op.key, op.kind.value, Result.SUCCESS, extra=extra))
        return rows

    def _describe(self, op: Operation) -> Dict[str, str]:
        try:
            extra = dict(self.target.describe(op))
        except Exception as exc:
            # Report columns are informational; the operation itself still runs
            logger.warning("Could not describe %s %s: %s", op.kind.value, op.key, exc)
            extra = {}
        if op.detail:
            extra["Detail"] = op.detail
        return extra

    def run(self, desired: Sequence[DesiredRecord]) -> List[OutcomeRow]:
        operations = self.plan(desired)
        try:
            return self.apply(operations)
        finally:
            if not self.dry_run:
                self.target.invalidate()
