import re

from django import forms
from django.contrib.auth import get_user_model
from django.utils.text import slugify

from apps.core.schools.models import School, SchoolDomain
from apps.core.schools.services import RESERVED_SUBDOMAINS


SUBDOMAIN_PATTERN = re.compile(r'^[a-z0-9][a-z0-9-]*[a-z0-9]$')


class SchoolOnboardingForm(forms.Form):
    school_name = forms.CharField(max_length=255)
    school_code = forms.CharField(
        max_length=40,
        required=False,
        help_text='Optional tenant code. Auto-generated when blank.',
    )
    school_subdomain = forms.CharField(
        max_length=63,
        required=False,
        help_text='Optional subdomain, e.g. north-campus',
    )
    school_domain = forms.CharField(
        max_length=253,
        required=False,
        help_text='Optional primary custom domain, e.g. portal.school.edu',
    )
    school_address = forms.CharField(widget=forms.Textarea, required=False)
    school_phone = forms.CharField(max_length=20, required=False)
    school_email = forms.EmailField(required=False)

    admin_username = forms.CharField(max_length=150)
    admin_email = forms.EmailField(required=False)
    admin_password = forms.CharField(widget=forms.PasswordInput)

    def clean_school_subdomain(self):
        subdomain = self.cleaned_data.get('school_subdomain', '').strip().lower()
        if not subdomain:
            return ''

        subdomain = slugify(subdomain)
        if len(subdomain) < 3:
            raise forms.ValidationError('Subdomain must be at least 3 characters.')
        if not SUBDOMAIN_PATTERN.match(subdomain):
            raise forms.ValidationError('Subdomain can only contain lowercase letters, numbers, and hyphens.')
        if subdomain in RESERVED_SUBDOMAINS:
            raise forms.ValidationError('This subdomain is reserved and cannot be used.')
        if School.objects.filter(subdomain=subdomain).exists():
            raise forms.ValidationError('This subdomain is already assigned.')
        return subdomain

    def clean_admin_username(self):
        username = self.cleaned_data['admin_username']
        user_model = get_user_model()
        if user_model.objects.filter(username=username).exists():
            raise forms.ValidationError('This username is already in use.')
        return username

    def clean_school_code(self):
        code = self.cleaned_data.get('school_code', '').strip()
        if not code:
            return ''
        normalized = slugify(code).replace('-', '_')
        if School.objects.filter(code=normalized).exists():
            raise forms.ValidationError('This school code is already in use.')
        return normalized

    def clean_school_domain(self):
        domain = self.cleaned_data.get('school_domain', '').strip().lower()
        if not domain:
            return ''
        if domain.startswith('www.'):
            domain = domain[4:]
        if SchoolDomain.objects.filter(domain=domain).exists():
            raise forms.ValidationError('This domain is already assigned.')
        return domain
