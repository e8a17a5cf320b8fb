from django import forms
from django.core.validators import MaxLengthValidator

from . import config


class SubjectGradeRowForm(forms.Form):
    """
    Shape check for one row of a grade sheet.

    Score bounds are enforced by gradebook.scoring so that every caller gets
    the same OUT_OF_RANGE error; this form only handles types and lengths.
    """
    student_id = forms.IntegerField(min_value=1)
    ca_score = forms.DecimalField(required=False, decimal_places=2)
    exam_score = forms.DecimalField(required=False, decimal_places=2)
    comment = forms.CharField(required=False, strip=True)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['comment'].validators.append(MaxLengthValidator(config.COMMENT_MAX_LENGTH))


class RejectionForm(forms.Form):
    """Reason given by a reviewer when sending a sheet back."""
    reason = forms.CharField(strip=True)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['reason'].validators.append(MaxLengthValidator(config.REJECTION_REASON_MAX_LENGTH))
