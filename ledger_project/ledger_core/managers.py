from django.db import models


# -----------------------------------------
# Enforce tenant scoping across all models
# that belong to a company
# -----------------------------------------
class TenantQuerySet(models.QuerySet):
    def for_company(self, company):         # Add queryset helper
        return self.filter(company=company)  # Apply filter


# Attach TenantQuerySet to .objects
class TenantManager(models.Manager.from_queryset(TenantQuerySet)):
    pass


class PostedLineQuerySet(TenantQuerySet):
    """Journal lines whose entry is posted: the only lines reports may read."""

    def posted(self):
        return self.filter(journal__status="posted")

    def dated_between(self, start=None, end=None):
        qs = self
        if start is not None:
            qs = qs.filter(journal__date__gte=start)
        if end is not None:
            qs = qs.filter(journal__date__lte=end)
        return qs


class JournalLineManager(models.Manager.from_queryset(PostedLineQuerySet)):
    pass
