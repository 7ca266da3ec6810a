"""Audience resolution against the employee directory."""

from __future__ import annotations

import uuid

import pytest
from app.agents.audience import AudienceResolver
from app.agents.schemas import decode_instance_config
from app.core.errors import ValidationError
from app.employees import InMemoryEmployeeDirectory

from conftest import employee_record


@pytest.fixture
def company_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def directory(company_id: uuid.UUID) -> InMemoryEmployeeDirectory:
    employees = [
        employee_record(company_id, f"Engineer {i:02d}", "Engineering", is_active=i >= 3)
        for i in range(15)
    ]
    employees += [
        employee_record(company_id, "Maria Lopez", "Product"),
        employee_record(company_id, "Mike Johnson", "Sales"),
        employee_record(company_id, "Lower Case", "engineering"),
    ]
    # Same department name in another company must never leak in.
    employees.append(employee_record(uuid.uuid4(), "Outsider", "Engineering"))
    return InMemoryEmployeeDirectory(company_id, employees)


def test_department_audience_counts_only_active_members(directory) -> None:
    resolver = AudienceResolver(directory)
    config = decode_instance_config(
        {"audience_type": "department", "target_department": "Engineering"}
    )

    targets = resolver.resolve(config)

    assert len(targets) == 12
    names = {e.full_name for e in directory.get_employees(targets).values()}
    assert "Lower Case" not in names
    assert "Outsider" not in names


def test_all_audience_includes_every_active_employee(directory) -> None:
    targets = AudienceResolver(directory).resolve(decode_instance_config({"audience_type": "all"}))
    assert len(targets) == 15


def test_specific_audience_filters_unknown_and_inactive(directory, company_id) -> None:
    active = directory.list_employees()[0]
    inactive = next(e for e in directory.list_employees(active_only=False) if not e.is_active)
    config = decode_instance_config(
        {
            "audience_type": "specific",
            "target_employee_ids": [str(active.id), str(inactive.id), str(uuid.uuid4())],
        }
    )

    assert AudienceResolver(directory).resolve(config) == frozenset({active.id})


def test_resolution_is_repeatable(directory) -> None:
    resolver = AudienceResolver(directory)
    config = decode_instance_config({"audience_type": "all"})
    assert resolver.resolve(config) == resolver.resolve(config)


@pytest.mark.parametrize(
    ("raw", "field"),
    [
        ({}, "audience_type"),
        ({"audience_type": "team"}, "audience_type"),
        ({"audience_type": "department"}, "target_department"),
        ({"audience_type": "department", "target_department": "  "}, "target_department"),
        ({"audience_type": "specific", "target_employee_ids": []}, "target_employee_ids"),
        ({"audience_type": "specific", "target_employee_ids": ["nope"]}, "target_employee_ids"),
        ({"audience_type": "all", "tone_preset": "sarcastic"}, "tone_preset"),
        ({"audience_type": "all", "max_messages": 1}, "max_messages"),
    ],
)
def test_invalid_config_names_the_field(raw, field) -> None:
    with pytest.raises(ValidationError) as excinfo:
        decode_instance_config(raw)
    assert excinfo.value.field == field


def test_config_round_trips_through_storage_shape() -> None:
    employee_id = uuid.uuid4()
    config = decode_instance_config(
        {
            "audience_type": "specific",
            "target_employee_ids": [str(employee_id)],
            "tone_preset": "poke_lite",
            "max_messages": 4,
        }
    )

    stored = config.to_storage()

    assert stored == {
        "tone_preset": "poke_lite",
        "audience_type": "specific",
        "target_employee_ids": [str(employee_id)],
        "max_messages": 4,
    }
    assert decode_instance_config(stored) == config
