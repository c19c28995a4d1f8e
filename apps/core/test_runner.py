from django.apps import apps
from django.test.runner import DiscoverRunner


PROJECT_APP_PREFIX = 'apps.'


def project_test_labels():
    """Dotted names of the installed ledger apps, for discovery without labels."""
    return sorted(
        app_config.name
        for app_config in apps.get_app_configs()
        if app_config.name.startswith(PROJECT_APP_PREFIX)
    )


class LedgerAppsDiscoverRunner(DiscoverRunner):
    def build_suite(self, test_labels=None, **kwargs):
        return super().build_suite(test_labels=test_labels or project_test_labels(), **kwargs)
