from django import forms

from .models import PLATFORM_CHOICES

COUNTRY_CHOICES = [
    ("us", "🇺🇸 United States"),
    ("gb", "🇬🇧 United Kingdom"),
    ("ca", "🇨🇦 Canada"),
    ("au", "🇦🇺 Australia"),
    ("de", "🇩🇪 Germany"),
    ("fr", "🇫🇷 France"),
    ("es", "🇪🇸 Spain"),
    ("it", "🇮🇹 Italy"),
    ("jp", "🇯🇵 Japan"),
    ("kr", "🇰🇷 South Korea"),
]

MAX_COMBOS_PER_REQUEST = 100
MAX_COMBO_LENGTH = 100

# Django's built-in error codes, per field, mapped to API error codes.
FIELD_ERROR_CODES = {
    "app_id": "INVALID_APP_ID",
    "locale": "UNSUPPORTED_LOCALE",
    "platform": "UNSUPPORTED_PLATFORM",
    "combos": "INVALID_COMBO",
}


class ComboListField(forms.Field):
    """A JSON list of combo strings."""

    def to_python(self, value):
        if value in (None, "", [], ()):
            return []
        if isinstance(value, str) or not isinstance(value, (list, tuple)):
            raise forms.ValidationError("combos must be a list of strings.", code="INVALID_COMBO")
        return list(value)

    def validate(self, value):
        super().validate(value)
        if len(value) > MAX_COMBOS_PER_REQUEST:
            raise forms.ValidationError(
                f"Too many combos: {len(value)} (max {MAX_COMBOS_PER_REQUEST}).",
                code="LIMIT_EXCEEDED",
            )
        for combo in value:
            if not isinstance(combo, str) or not combo.strip():
                raise forms.ValidationError(
                    "Each combo must be a non-empty string.", code="INVALID_COMBO"
                )
            if len(combo) > MAX_COMBO_LENGTH:
                raise forms.ValidationError(
                    f"Combo too long (max {MAX_COMBO_LENGTH} characters).",
                    code="COMBO_TOO_LONG",
                )


class ApiForm(forms.Form):
    """Base form for JSON endpoints: exposes the first error as code + message."""

    def error_payload(self) -> dict:
        for name, errors in self.errors.as_data().items():
            error = errors[0]
            code = error.code or ""
            if code == "required":
                code = "INVALID_REQUEST"
            elif not code.isupper():
                code = FIELD_ERROR_CODES.get(name, "INVALID_REQUEST")
            message = " ".join(error.messages)
            if name != "__all__":
                message = f"{name}: {message}"
            return {"code": code, "message": message}
        return {"code": "INVALID_REQUEST", "message": "Invalid request."}


class ComboRankingsForm(ApiForm):
    """Request body of the batch ranking endpoint."""

    app_id = forms.CharField(max_length=20)
    organization_id = forms.CharField(max_length=64)
    locale = forms.ChoiceField(choices=COUNTRY_CHOICES)
    platform = forms.ChoiceField(choices=PLATFORM_CHOICES, required=False)
    combos = ComboListField()

    def clean_app_id(self):
        raw = str(self.cleaned_data.get("app_id", "")).strip()
        if not raw.isdigit() or int(raw) <= 0:
            raise forms.ValidationError("appId must be numeric.", code="INVALID_APP_ID")
        return int(raw)

    def clean_platform(self):
        return self.cleaned_data.get("platform") or "ios"


class AnalyzeForm(ApiForm):
    """Options for running the engine on a registered app."""

    locale = forms.ChoiceField(choices=COUNTRY_CHOICES, required=False)
    platform = forms.ChoiceField(choices=PLATFORM_CHOICES, required=False)
    skip_fetch = forms.BooleanField(required=False)
    force_refresh = forms.BooleanField(required=False)
    timeout = forms.FloatField(required=False, min_value=1, max_value=300)

    def clean_locale(self):
        return self.cleaned_data.get("locale") or "us"

    def clean_platform(self):
        return self.cleaned_data.get("platform") or "ios"
