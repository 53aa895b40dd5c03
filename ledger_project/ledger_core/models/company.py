from django.db import models


# ---------- Tenant / Company ----------
class Company(models.Model):

    """Tenant / Organization"""
    # Store company’s full display name
    name = models.CharField(max_length=200)

    slug = models.SlugField(  # A URL-friendly identifier
        max_length=80, unique=True  # no two companies can have the same slug
    )

    # Functional currency; documents default to it
    currency_code = models.CharField(max_length=10, default="USD")

    # Persistent journal sequence.
    """ Incremented under a row lock by the posting service,
    never derived from max(entry_number) + 1 """
    last_entry_number = models.PositiveBigIntegerField(default=0)

    # Store timestamp when the record is first created
    created_at = models.DateTimeField(auto_now_add=True)

    # Meta options
    class Meta:
        verbose_name_plural = "companies"

    # String Representation
    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        # Fill slug from name so tests and seeds can skip it
        if not self.slug:
            from django.utils.text import slugify

            base = slugify(self.name) or "company"
            slug = base
            i = 1
            while Company.objects.filter(slug=slug).exclude(pk=self.pk).exists():
                slug = f"{base}-{i}"  # "acme" → "acme-1" → "acme-2"
                i += 1
            self.slug = slug
        return super().save(*args, **kwargs)
