"""
tests/
------
RxGuard — Medication Safety Validation Engine — Test Package
-------------------------------------------------------------
pytest suites, one per engine module, plus shared recording fakes.

Test Modules:
    - fakes.py: recording/failing knowledge source, audit logger, notifier
    - test_schemas.py, test_vital_signs.py, test_safety_guidelines.py
    - test_interactions.py, test_allergy_check.py
    - test_drug_interaction_service.py, test_medical_validation.py
    - test_knowledge_client.py, test_audit_log.py, test_notifications.py
    - test_main.py

Project: RxGuard — Medication Safety Validation Engine
"""
