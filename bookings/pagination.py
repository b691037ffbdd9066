from django.core.paginator import Paginator

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


def _positive_int(value, default):
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def paginate(request, queryset):
    """Slice ``queryset`` by the ``page``/``limit`` query params.

    Returns the page's objects and the ``pagination`` block for the response.
    Out-of-range pages fall back to the last page.
    """
    limit = min(_positive_int(request.GET.get('limit'), DEFAULT_LIMIT), MAX_LIMIT)
    paginator = Paginator(queryset, limit)
    page = paginator.get_page(_positive_int(request.GET.get('page'), 1))
    return page.object_list, {
        'page': page.number,
        'limit': limit,
        'total': paginator.count,
        'pages': paginator.num_pages if paginator.count else 0,
    }
