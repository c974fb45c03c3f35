#!/usr/bin/env python3
"""
Walkthrough of the accessgate decision pipeline.

This demonstrates the basic flow:
1. Create subjects and assign clearances
2. Register a classified resource and grant access to it
3. Evaluate requests through MAC, DAC, RuBAC and ABAC
4. Verify the audit ledger and detect tampering
"""

from dataclasses import replace

from accessgate import (
    AccessContext,
    RecordingNotifier,
    RuleType,
    SecurityLabel,
    SecurityLevel,
    SigningKeyProvider,
    Subject,
    auto_classify,
    create_engine,
)


def show(engine, subject_id, action="read", context=None):
    decision = engine.evaluate_access(subject_id, "document", "q3-report", action, context)
    status = "ALLOWED" if decision.allowed else "DENIED"
    print(f"  {subject_id:8} {action:6} -> {status:8} {decision.reason or ''}")
    return decision


def main():
    print("=" * 60)
    print("accessgate - Unified Access Decision Demo")
    print("=" * 60)
    print()

    notifier = RecordingNotifier()
    engine = create_engine(notifier=notifier, signer=SigningKeyProvider.generate())

    # Subjects
    for subject in (
        Subject("admin", "Root Admin", "admin@example.com", role="SUPER_ADMIN"),
        Subject("alice", "Alice Kim", "alice@example.com"),
        Subject("bob", "Bob Lee", "bob@example.com"),
        Subject("carol", "Carol Park", "carol@example.com"),
    ):
        engine.store.save_subject(subject)

    engine.assign_clearance("alice", SecurityLevel.CONFIDENTIAL, ["FINANCIAL"], assigned_by="admin")
    engine.assign_clearance("bob", SecurityLevel.RESTRICTED, ["FINANCIAL"], assigned_by="admin")
    engine.assign_clearance("carol", SecurityLevel.TOP_SECRET, assigned_by="admin")

    print("Clearances:")
    for subject_id in ("alice", "bob", "carol"):
        clearance = engine.store.get_clearance(subject_id)
        print(f"  - {subject_id}: {clearance.level.name} {sorted(clearance.compartments)}")
    print()

    # Classify and register the resource
    content = "Q3 revenue forecast and budget figures"
    label = auto_classify(content)
    print(f"Auto-classified content: {label.level.name} {sorted(label.compartments)}")

    engine.permissions.register_resource(
        "document", "q3-report", owner_id="alice",
        security_label=SecurityLabel(SecurityLevel.CONFIDENTIAL, {"FINANCIAL"}),
    )
    print("Registered document:q3-report as CONFIDENTIAL [FINANCIAL], owned by alice")
    print()

    print("Before any grant:")
    show(engine, "alice")
    show(engine, "bob")
    show(engine, "carol")
    show(engine, "admin", "delete")
    print()

    engine.grant_permission("document", "q3-report", "bob", "alice", read=True)
    print("After alice grants bob read:")
    show(engine, "bob")
    show(engine, "bob", "write")
    print()

    # Contextual rule: no access from blocked countries
    rule = engine.rules.create_rule(RuleType.LOCATION_BASED, {"blocked_countries": ["KP"]}, name="geo block")
    engine.rules.attach_rule(rule.id, "document", "read")

    # Attribute policy: finance department only
    engine.policies.create_policy(
        "finance only", "document", "read",
        {"attribute": "subject.department", "operator": "equals", "value": "Finance"},
    )
    engine.attributes.set_subject_attribute("alice", "department", "Finance")

    print("With a location rule and a department policy:")
    show(engine, "alice", context=AccessContext(country="KR"))
    show(engine, "alice", context=AccessContext(country="KP"))
    show(engine, "bob", context=AccessContext(country="KR"))
    print()

    # Sharing link
    link = engine.create_sharing_link("document", "q3-report", "alice", max_uses=1, password="s3cret")
    print("Sharing link (one use, password protected):")
    print(f"  wrong password -> {engine.sharing.verify_sharing_link(link.token, password='nope').reason}")
    print(f"  right password -> allowed={engine.sharing.verify_sharing_link(link.token, password='s3cret').allowed}")
    engine.sharing.use_sharing_link(link.token)
    print(f"  after one use  -> {engine.sharing.verify_sharing_link(link.token, password='s3cret').reason}")
    print()

    # Ledger
    result = engine.verify_chain()
    print(f"Ledger: {result.checked} entries, valid={result.valid}")

    logs = engine.store.list_audit_logs()
    batch = engine.ledger.sign_batch("daily", [log.id for log in logs], signed_by="admin")
    print(f"Signed batch 'daily': {batch[:24]}...")

    victim = logs[len(logs) // 2]
    engine.store.update_audit_log(replace(victim, denial_reason="nothing to see here"))

    result = engine.verify_chain()
    print(f"After editing one entry: valid={result.valid}, "
          f"last valid sequence={result.last_valid_sequence}, tampered={len(result.tampered_entries)}")
    # The batch signs chain hashes; content edits are caught by the chain replay
    print(f"Batch signature over chain hashes: valid={engine.ledger.verify_batch('daily').valid}")
    print()

    print("Notifications sent:")
    for notification in notifier.notifications:
        print(f"  [{notification.severity.name}] {notification.title}")


if __name__ == "__main__":
    main()
