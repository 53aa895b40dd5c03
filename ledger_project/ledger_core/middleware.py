import logging
from django.conf import settings
from django.utils.deprecation import MiddlewareMixin
from .models import Company

logger = logging.getLogger(__name__)


class CurrentCompanyMiddleware(MiddlewareMixin):
    # Run on every request and
    # attach a .company attribute to the request, based on the company header
    def process_request(self, request):
        # Authentication lives upstream; the gateway forwards the tenant id
        header = getattr(settings, "LEDGER_COMPANY_HEADER", "HTTP_X_COMPANY_ID")
        company_id = request.META.get(header)

        request.company = None
        if not company_id:
            return

        try:
            request.company = Company.objects.get(pk=int(company_id))
        except (Company.DoesNotExist, ValueError):
            # unknown or malformed id, views answer with an error
            logger.warning("Request for unknown company %r", company_id)
