"""
Basic Usage Example

This example walks through the main temporalfix operations:
- Stamping new and updated records
- Detecting and converting legacy timestamps
- Migrating a key/value corpus and rolling it back
- Reading the health snapshot

Run with: python examples/basic_usage.py
"""

import asyncio
import json

from temporalfix import InMemoryKeyValueStore, TemporalContext

# =============================================================================
# Legacy data
# =============================================================================
# Records written by older releases keep their dates in whatever shape the
# client produced at the time.

LEGACY_NOTES = {
    "note-1": {"title": "groceries", "created": "15/01/2025"},
    "note-2": {"title": "call back", "timestamp": "2 hours ago"},
    "note-3": {"title": "imported", "createdAt": 1736610000},
    "note-4": {"title": "broken", "timestamp": "invalid-date"},
}


async def main():
    print("=" * 60)
    print("temporalfix Basic Usage Example")
    print("=" * 60)

    store = InMemoryKeyValueStore({key: json.dumps(value) for key, value in LEGACY_NOTES.items()})

    async with TemporalContext.create(store) as ctx:
        print("\n1. Stamping records")
        draft = ctx.stamp({"title": "draft"})
        print(f"   createdAt: {ctx.format(draft['createdAt'])}")
        edited = ctx.apply_operation("update", draft)
        print(f"   updatedAt: {ctx.format(edited['updatedAt'])}")

        print("\n2. Legacy formats")
        for value in ("15/01/2025", "2 hours ago", "há 3 dias", 1736610000, "hello"):
            detection = ctx.detect_legacy(value)
            if detection.detected:
                print(f"   {value!r:<14} {detection.type.value:<16} {ctx.convert_legacy(value)}")
            else:
                print(f"   {value!r:<14} not a timestamp")

        print("\n3. Scanning")
        found = await ctx.scan()
        for item in found:
            print(f"   {item.entity_id}.{item.field}: {item.severity.value}")

        print("\n4. Migrating")
        ctx.on_progress(lambda p: print(f"   {p.phase.value}: {p.percent:.0f}%"))
        report = await ctx.migrate()
        print(f"   success={report.success} migrated={report.summary.total_migrated}")
        print(f"   note-1 is now {await store.get('note-1')}")

        print("\n5. Health")
        snapshot = ctx.health()
        print(f"   status={snapshot.status.value} score={snapshot.score:.1f}")

    print("\n" + "=" * 60)
    print("Example completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
