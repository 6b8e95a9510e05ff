"""Preset schema templates users can start from."""

from tracker2notion.models import FieldConfig, SchemaTemplate, ValueKind


def _name_field(hint: str) -> FieldConfig:
    return FieldConfig(
        id="name",
        name="Name",
        value_kind=ValueKind.TITLE,
        required=True,
        show_in_form=False,  # generated from the description
        extract_from_ai=True,
        ai_prompt_hint=hint,
    )


def _date_field() -> FieldConfig:
    # Filled with the entry timestamp
    return FieldConfig(id="date", name="Date", value_kind=ValueKind.DATE, required=True, show_in_form=False)


def _photo_field() -> FieldConfig:
    return FieldConfig(id="photo", name="Photo", value_kind=ValueKind.URL, show_in_form=False)


def _summary_field(hint: str | None = None) -> FieldConfig:
    return FieldConfig(
        id="summary",
        name="Summary",
        value_kind=ValueKind.TEXT,
        show_in_form=False,
        extract_from_ai=True,
        ai_prompt_hint=hint,
    )


def _grams(field_id: str, name: str, hint: str, unit: str = "g") -> FieldConfig:
    return FieldConfig(
        id=field_id,
        name=name,
        value_kind=ValueKind.NUMBER,
        number_format="number",
        unit=unit,
        show_in_form=False,
        extract_from_ai=True,
        ai_prompt_hint=hint,
    )


MACRO_TRACKING = SchemaTemplate(
    id="macro-tracking",
    name="Macro Tracking",
    description="Track protein, carbs, fat, and calories for each meal",
    icon="💪",
    recommended=True,
    fields=[
        _name_field("A short, descriptive name for this meal (2-5 words)"),
        _date_field(),
        _grams("protein", "Protein", "Estimated grams of protein"),
        _grams("carbs", "Carbs", "Estimated grams of carbohydrates"),
        _grams("fat", "Fat", "Estimated grams of fat"),
        _grams("calories", "Calories", "Estimated total calories", unit="kcal"),
        _summary_field("A brief nutritional summary of the meal"),
        _photo_field(),
    ],
)

SIMPLE_LOGGING = SchemaTemplate(
    id="simple-logging",
    name="Simple Logging",
    description="Basic food logging with photos and descriptions",
    icon="📝",
    recommended=True,
    fields=[
        _name_field("A short, descriptive name for this meal"),
        _date_field(),
        _summary_field(),
        _photo_field(),
    ],
)

KETO_TRACKING = SchemaTemplate(
    id="keto-tracking",
    name="Keto Tracking",
    description="Track net carbs, fat, and protein for ketogenic diet",
    icon="🥑",
    fields=[
        _name_field("A short, descriptive name for this meal"),
        _date_field(),
        _grams("net_carbs", "Net Carbs", "Estimated net carbs (total carbs minus fiber)"),
        _grams("fat", "Fat", "Estimated grams of fat"),
        _grams("protein", "Protein", "Estimated grams of protein"),
        _grams("calories", "Calories", "Estimated total calories", unit="kcal"),
        _summary_field(),
        _photo_field(),
    ],
)

FULL_NUTRITION = SchemaTemplate(
    id="full-nutrition",
    name="Full Nutrition",
    description="Comprehensive tracking with macros and micronutrients",
    icon="📊",
    fields=[
        _name_field("Food or meal name"),
        FieldConfig(
            id="description",
            name="Description",
            value_kind=ValueKind.TEXT,
            required=True,
            show_in_form=True,
            ai_prompt_hint='What did you eat? (e.g., "Grilled chicken salad with olive oil")',
        ),
        _date_field(),
        FieldConfig(
            id="meal_type",
            name="Meal Type",
            value_kind=ValueKind.SELECT,
            show_in_form=True,
            options=["Breakfast", "Lunch", "Dinner", "Snack", "Pre-Workout", "Post-Workout"],
            extract_from_ai=True,
            ai_prompt_hint="Type of meal",
        ),
        FieldConfig(
            id="portion_size",
            name="Portion Size",
            value_kind=ValueKind.TEXT,
            show_in_form=False,
            extract_from_ai=True,
            ai_prompt_hint='Estimated portion size (e.g., "1 cup", "200g")',
        ),
        _grams("calories", "Calories", "Estimated total calories", unit="kcal"),
        _grams("protein", "Protein", "Estimated grams of protein"),
        _grams("carbs", "Carbs", "Estimated grams of carbohydrates"),
        _grams("fat", "Fat", "Estimated grams of fat"),
        _grams("fiber", "Fiber", "Estimated grams of fiber"),
        _grams("sugar", "Sugar", "Estimated grams of sugar"),
        _grams("sodium", "Sodium", "Estimated milligrams of sodium", unit="mg"),
        _summary_field("AI-generated nutritional insights"),
        _photo_field(),
    ],
)

SCHEMA_TEMPLATES: dict[str, SchemaTemplate] = {
    t.id: t for t in (MACRO_TRACKING, SIMPLE_LOGGING, KETO_TRACKING, FULL_NUTRITION)
}

DEFAULT_TEMPLATE_ID = SIMPLE_LOGGING.id


def get_template(template_id: str) -> SchemaTemplate | None:
    return SCHEMA_TEMPLATES.get(template_id)


def list_templates() -> list[SchemaTemplate]:
    return list(SCHEMA_TEMPLATES.values())
