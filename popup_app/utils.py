def get_client_ip(request):
    """Get client IP address, handling proxies."""
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        return forwarded.split(',')[0].strip()
    if request.headers.get('X-Real-IP'):
        return request.headers.get('X-Real-IP')
    return request.META.get('REMOTE_ADDR') or 'unknown'


def request_metadata(request):
    """User agent and IP recorded alongside audit entries."""
    return {
        'user_agent': (request.headers.get('User-Agent') or '')[:500] or None,
        'ip_address': get_client_ip(request),
    }
