from django import forms

from apps.core.users.permissions import Permission, permission_choices


class AdminPermissionsForm(forms.Form):
    unrestricted = forms.BooleanField(
        required=False,
        help_text='Primary admin: bypasses individual permission checks.',
    )
    permissions = forms.MultipleChoiceField(
        choices=permission_choices,
        required=False,
        widget=forms.CheckboxSelectMultiple,
    )

    @classmethod
    def for_user(cls, user, *args, **kwargs):
        granted = user.granted_permissions
        kwargs.setdefault('initial', {
            'unrestricted': granted is None,
            'permissions': sorted(key.value for key in granted or ()),
        })
        return cls(*args, **kwargs)

    def clean(self):
        cleaned_data = super().clean()
        if cleaned_data.get('unrestricted') and cleaned_data.get('permissions'):
            self.add_error(
                'permissions',
                'Leave individual permissions empty for an unrestricted admin.',
            )
        return cleaned_data

    def granted_permissions(self):
        """None for unrestricted admins, otherwise the selected set."""
        if self.cleaned_data.get('unrestricted'):
            return None
        return frozenset(Permission(key) for key in self.cleaned_data.get('permissions', []))
