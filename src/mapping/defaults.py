"""Дефолтный маппинг полей для UK Apprenticeships Vacancy API (v2)."""

# Целевое поле → dot-path в записи API. Порядок сохраняется.
DEFAULT_FIELD_MAPPING: dict[str, str] = {
    "title": "title",
    "description": "description",
    "short_description": "shortDescription",
    "vacancy_reference": "vacancyReference",
    "vacancy_url": "vacancyUrl",
    "employer_name": "employerName",
    "employer_website_url": "employerWebsiteUrl",
    "employer_description": "employerDescription",
    "provider_name": "providerName",
    "provider_ukprn": "ukprn",
    "course_title": "course.title",
    "course_level": "course.level",
    "apprenticeship_level": "apprenticeshipLevel",
    "wage_type": "wage.wageType",
    "wage_amount": "wage.wageAmount",
    "wage_unit": "wage.wageUnit",
    "wage_text": "wage.wageAdditionalInformation",
    "working_week": "wage.workingWeekDescription",
    "hours_per_week": "hoursPerWeek",
    "expected_duration": "expectedDuration",
    "positions_available": "numberOfPositions",
    "posted_date": "postedDate",
    "closing_date": "closingDate",
    "start_date": "startDate",
    "address_line1": "addresses[0].addressLine1",
    "address_line2": "addresses[0].addressLine2",
    "address_line3": "addresses[0].addressLine3",
    "postcode": "addresses[0].postcode",
    "latitude": "addresses[0].latitude",
    "longitude": "addresses[0].longitude",
    "skills": "skills",
    "qualifications": "qualifications",
    "is_disability_confident": "isDisabilityConfident",
}

DEFAULT_UNIQUE_ID_FIELD = "vacancyReference"
DEFAULT_HEADERS: dict[str, str] = {"X-Version": "2"}
DEFAULT_PARAMS: dict[str, str] = {"Sort": "AgeDesc"}
DEFAULT_AUTH_HEADER = "Ocp-Apim-Subscription-Key"
DEFAULT_ENTITY = "vacancy"

# Поля, по которым политика if_changed решает, обновлять ли запись
COMPARISON_FIELDS = ("title", "closing_date", "positions_available", "short_description")

# Структурированные блоки, которые сохраняются целиком (JSON)
STRUCTURED_BLOCKS = ("addresses", "course", "wage", "employerContactDetails", "providerContactDetails")
