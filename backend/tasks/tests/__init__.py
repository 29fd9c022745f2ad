# tasks/tests/__init__.py
"""
Task App Test Suite
===================

This package contains unit and integration tests for the tasks application.

Modules:
--------
- test_rules: Unit tests for the rule-based decision engine
- test_cache: Unit tests for the decision cache (expiry, eviction, generations)
- test_orchestration: Integration tests for the decision pipeline and its fallback
- test_external_provider: OpenAI provider tests with a mocked client
- test_api: HTTP tests for the decision endpoints
- test_celery_tasks: Background job tests

Running Tests:
--------------
    # Run all task tests
    python manage.py test tasks

    # Run specific test module
    python manage.py test tasks.tests.test_rules
    python manage.py test tasks.tests.test_orchestration

    # Or through pytest-django from the repository root
    pytest
"""
