from decimal import Decimal

DEFAULT_PLAN_ID = 'basic'

PLANS = {
    'basic': {
        'name': 'Privacy Popup Basic',
        'price': Decimal('4.99'),
        'currency': 'USD',
        'interval': 'EVERY_30_DAYS',
        'trial_days': 7,
        'features': [
            'Customizable privacy popup',
            'Multiple position options',
            'Basic styling options',
            'Cookie consent tracking',
        ],
    },
    'premium': {
        'name': 'Privacy Popup Premium',
        'price': Decimal('9.99'),
        'currency': 'USD',
        'interval': 'EVERY_30_DAYS',
        'trial_days': 7,
        'features': [
            'All Basic features',
            'Advanced styling options',
            'Custom CSS support',
            'Analytics dashboard',
            'Priority support',
        ],
    },
}


def get_plan(plan_id):
    """Unknown plan ids fall back to the basic plan."""
    return PLANS.get(plan_id) or PLANS[DEFAULT_PLAN_ID]


def available_plans():
    return [
        {
            'id': plan_id,
            'name': plan['name'],
            'price': str(plan['price']),
            'currency': plan['currency'],
            'interval': 'monthly',
            'trial_days': plan['trial_days'],
            'features': plan['features'],
        }
        for plan_id, plan in PLANS.items()
    ]
