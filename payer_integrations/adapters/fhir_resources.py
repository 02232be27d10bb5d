"""Typed views of the FHIR R4 resources payer adapters consume.

FHIR JSON is parsed into these models as soon as it comes off the wire, so
normalization code works with attributes instead of nested dict lookups.
Unknown fields are ignored.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class FHIRModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Coding(FHIRModel):
    system: str | None = None
    code: str | None = None
    display: str | None = None


class CodeableConcept(FHIRModel):
    coding: list[Coding] = []
    text: str | None = None

    @property
    def first_code(self) -> str | None:
        return self.coding[0].code if self.coding else None

    @property
    def first_display(self) -> str | None:
        return self.coding[0].display if self.coding else None


class Identifier(FHIRModel):
    system: str | None = None
    value: str | None = None


class Period(FHIRModel):
    start: str | None = None
    end: str | None = None


class Reference(FHIRModel):
    reference: str | None = None
    display: str | None = None


class Money(FHIRModel):
    value: float | str | None = None
    currency: str | None = None


class Patient(FHIRModel):
    resource_type: str = Field(default="Patient", alias="resourceType")
    id: str | None = None
    identifier: list[Identifier] = []

    def identifier_value(self, system_fragment: str) -> str | None:
        """Value of the first identifier whose system contains a fragment."""
        for ident in self.identifier:
            if ident.system and system_fragment in ident.system.lower():
                return ident.value
        return None


class Coverage(FHIRModel):
    resource_type: str = Field(default="Coverage", alias="resourceType")
    id: str | None = None
    status: str | None = None
    type: CodeableConcept | None = None
    period: Period | None = None
    subscriber_id: str | None = Field(default=None, alias="subscriberId")


class EOBTotal(FHIRModel):
    category: CodeableConcept | None = None
    amount: Money | None = None


class ExplanationOfBenefit(FHIRModel):
    resource_type: str = Field(default="ExplanationOfBenefit", alias="resourceType")
    id: str | None = None
    identifier: list[Identifier] = []
    status: str | None = None
    type: CodeableConcept | None = None
    created: str | None = None
    billable_period: Period | None = Field(default=None, alias="billablePeriod")
    provider: Reference | None = None
    total: list[EOBTotal] = []

    def total_amount(self, category_code: str) -> Any:
        """Raw amount of the total whose first category coding matches."""
        for total in self.total:
            if total.category and total.category.first_code == category_code:
                return total.amount.value if total.amount else None
        return None


class BundleEntry(FHIRModel):
    resource: dict[str, Any] | None = None


class Bundle(FHIRModel):
    resource_type: str = Field(default="Bundle", alias="resourceType")
    total: int | None = None
    entry: list[BundleEntry] = []

    def raw_resources(self, model: type[FHIRModel]) -> list[dict[str, Any]]:
        """Entry resources whose ``resourceType`` matches the model.

        Search bundles may also carry OperationOutcome or included
        resources; those are skipped.
        """
        resource_type = model.model_fields["resource_type"].default
        return [
            entry.resource
            for entry in self.entry
            if entry.resource and entry.resource.get("resourceType") == resource_type
        ]

    def resources(self, model: type[FHIRModel]) -> list[Any]:
        """Parse every matching entry resource with the given model."""
        return [model.model_validate(resource) for resource in self.raw_resources(model)]

    def first_raw(self, model: type[FHIRModel]) -> dict[str, Any] | None:
        """JSON of the first matching entry resource, or None."""
        matches = self.raw_resources(model)
        return matches[0] if matches else None

    def first(self, model: type[FHIRModel]) -> Any:
        """Parse the first matching entry resource, or None."""
        raw = self.first_raw(model)
        return model.model_validate(raw) if raw is not None else None
