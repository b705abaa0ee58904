"""Тесты построения NormalizedRecord."""
import pytest

from src.exceptions import MissingUniqueIdError, TransformError
from src.mapping.mapper import build_record, resolve_classification, resolve_unique_id
from src.mapping.transforms import compile_transforms
from src.models.task import ImportTask


def _item(**overrides):
    item = {
        "vacancyReference": "VAC1000012345",
        "title": "Junior <b>Developer</b>",
        "shortDescription": "Build things",
        "description": "<p>Great role</p><script>x()</script>",
        "numberOfPositions": 2,
        "closingDate": "2026-11-30T00:00:00",
        "vacancyUrl": "https://www.findapprenticeship.service.gov.uk/vacancy/1000012345",
        "employerName": "Acme Ltd",
        "isEmployerAnonymous": False,
        "isDisabilityConfident": True,
        "course": {"title": "Software developer", "level": 4, "route": "Digital"},
        "addresses": [{"addressLine1": "1 High Street", "postcode": "SW1A 1AA"}],
        "skills": ["Python", "Teamwork"],
    }
    item.update(overrides)
    return item


class TestResolveUniqueId:
    def test_present(self) -> None:
        assert resolve_unique_id(_item(), "vacancyReference") == "VAC1000012345"

    def test_numeric_id_as_string(self) -> None:
        assert resolve_unique_id({"id": 42}, "id") == "42"

    @pytest.mark.parametrize("value", [None, "", "   ", {"a": 1}])
    def test_empty_rejected(self, value) -> None:
        with pytest.raises(MissingUniqueIdError):
            resolve_unique_id({"vacancyReference": value}, "vacancyReference")


class TestClassification:
    """Уровень / направление / работодатель."""

    def test_level_from_apprenticeship_level(self) -> None:
        result = resolve_classification(_item(apprenticeshipLevel="Higher"))
        assert result["level"] == "Higher"

    def test_level_fallback_to_course_level(self) -> None:
        assert resolve_classification(_item())["level"] == "Level 4"

    def test_route_and_employer(self) -> None:
        result = resolve_classification(_item())
        assert result["route"] == "Digital"
        assert result["employer"] == "Acme Ltd"

    def test_anonymous_employer_omitted(self) -> None:
        result = resolve_classification(_item(isEmployerAnonymous=True))
        assert "employer" not in result

    def test_nothing_known(self) -> None:
        assert resolve_classification({"vacancyReference": "x"}) == {}


class TestBuildRecord:
    """build_record с дефолтным маппингом."""

    def test_default_mapping(self) -> None:
        record = build_record(_item(), ImportTask())

        assert record.unique_id == "VAC1000012345"
        fields = record.fields
        assert fields["title"] == "Junior Developer"
        assert fields["description"] == "<p>Great role</p>"
        assert fields["positions_available"] == 2
        assert fields["postcode"] == "SW1A 1AA"
        assert fields["is_disability_confident"] == "1"
        assert fields["skills"] == '["Python", "Teamwork"]'
        assert fields["course_level"] == 4
        assert "wage_amount" not in fields

    def test_structured_blocks_kept(self) -> None:
        record = build_record(_item(), ImportTask())
        assert record.fields["addresses_data"].startswith("[{")
        assert '"route": "Digital"' in record.fields["course_data"]

    def test_custom_mapping_and_unique_id(self) -> None:
        task = ImportTask(field_mappings={"title": "name"}, unique_id_field="ref.id")
        record = build_record({"ref": {"id": 7}, "name": "Chef"}, task)
        assert record.unique_id == "7"
        assert record.fields == {"title": "Chef"}

    def test_missing_unique_id(self) -> None:
        item = _item()
        del item["vacancyReference"]
        with pytest.raises(MissingUniqueIdError):
            build_record(item, ImportTask())

    def test_transforms_applied_before_mapping(self) -> None:
        steps = compile_transforms('date(closingDate); default(shortDescription, "n/a")')
        record = build_record(_item(shortDescription=None), ImportTask(), steps)
        assert record.fields["closing_date"] == "2026-11-30"
        assert record.fields["short_description"] == "n/a"

    def test_transform_failure_propagates(self) -> None:
        steps = compile_transforms("date(closingDate)")
        with pytest.raises(TransformError):
            build_record(_item(closingDate="soon"), ImportTask(), steps)
