from importlib.util import find_spec

from django.apps import apps
from django.test.runner import DiscoverRunner


class InstalledAppsOnlyDiscoverRunner(DiscoverRunner):
    """Discover tests only in the project's own installed apps that ship a tests module."""

    def build_suite(self, test_labels=None, **kwargs):
        if not test_labels:
            test_labels = [
                app_config.name
                for app_config in apps.get_app_configs()
                if app_config.name.startswith('apps.') and find_spec(f'{app_config.name}.tests')
            ]
        return super().build_suite(test_labels=test_labels, **kwargs)
