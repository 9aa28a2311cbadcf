"""
Bundled endpoint catalog

Last-resort catalog used when neither the backend nor the static file can
be loaded. Keyed by category, the same shape the static file may use.
"""

import copy
from typing import Any, Dict, List

def _param(name: str, location: str, description: str, type_: str = 'string',
           required: bool = False, default: Any = None) -> Dict[str, Any]:
    param = {'name': name, 'in': location, 'description': description, 'required': required, 'type': type_}
    if default is not None:
        param['default'] = default
    return param

def _paging(noun: str) -> List[Dict[str, Any]]:
    return [
        _param('page', 'query', 'Page number', 'integer', default=1),
        _param('limit', 'query', f'Number of {noun} per page', 'integer', default=10)
    ]

def _json_body(properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {
        'required': True,
        'content': {
            'application/json': {
                'schema': {'type': 'object', 'properties': properties, 'required': required}
            }
        }
    }

BUNDLED_ENDPOINTS: Dict[str, List[Dict[str, Any]]] = {
    'System': [
        {
            'id': 'health', 'name': 'API Health', 'method': 'GET', 'path': '/api/v1/health',
            'description': 'Check the health status of the API', 'tags': ['health', 'system']
        },
        {
            'id': 'status', 'name': 'API Status', 'method': 'GET', 'path': '/api/v1/status',
            'description': 'Get detailed status of the API and its dependencies', 'tags': ['system']
        },
    ],
    'Users': [
        {
            'id': 'users-list', 'name': 'List Users', 'method': 'GET', 'path': '/api/v1/users',
            'description': 'Get a list of all users', 'parameters': _paging('users'), 'tags': ['users']
        },
        {
            'id': 'users-get', 'name': 'Get User', 'method': 'GET', 'path': '/api/v1/users/{id}',
            'description': 'Get a specific user by ID',
            'parameters': [_param('id', 'path', 'User ID', required=True)], 'tags': ['users']
        },
        {
            'id': 'users-create', 'name': 'Create User', 'method': 'POST', 'path': '/api/v1/users',
            'description': 'Create a new user', 'tags': ['users'],
            'requestBody': _json_body({
                'name': {'type': 'string', 'description': 'User name', 'example': 'John Doe'},
                'email': {'type': 'string', 'description': 'User email', 'example': 'john@example.com'},
                'role': {'type': 'string', 'description': 'User role', 'enum': ['admin', 'user'], 'example': 'user'}
            }, ['name', 'email'])
        },
    ],
    'Products': [
        {
            'id': 'products-list', 'name': 'List Products', 'method': 'GET', 'path': '/api/v1/products',
            'description': 'Get a list of all products', 'tags': ['products'],
            'parameters': _paging('products') + [_param('category', 'query', 'Filter by category')]
        },
        {
            'id': 'products-get', 'name': 'Get Product', 'method': 'GET', 'path': '/api/v1/products/{id}',
            'description': 'Get a specific product by ID',
            'parameters': [_param('id', 'path', 'Product ID', required=True)], 'tags': ['products']
        },
        {
            'id': 'products-create', 'name': 'Create Product', 'method': 'POST', 'path': '/api/v1/products',
            'description': 'Create a new product', 'tags': ['products'], 'requiresAuth': True,
            'requestBody': _json_body({
                'name': {'type': 'string', 'description': 'Product name', 'example': 'Widget'},
                'price': {'type': 'number', 'description': 'Product price', 'example': 9.99},
                'category': {'type': 'string', 'description': 'Product category', 'example': 'tools'}
            }, ['name', 'price'])
        },
    ],
    'Orders': [
        {
            'id': 'orders-list', 'name': 'List Orders', 'method': 'GET', 'path': '/api/v1/orders',
            'description': 'Get a list of orders for the current user', 'requiresAuth': True,
            'parameters': _paging('orders'), 'tags': ['orders']
        },
        {
            'id': 'orders-get', 'name': 'Get Order', 'method': 'GET', 'path': '/api/v1/orders/{id}',
            'description': 'Get a specific order by ID', 'requiresAuth': True,
            'parameters': [_param('id', 'path', 'Order ID', required=True)], 'tags': ['orders']
        },
        {
            'id': 'orders-create', 'name': 'Create Order', 'method': 'POST', 'path': '/api/v1/orders',
            'description': 'Place a new order', 'requiresAuth': True, 'tags': ['orders'],
            'requestBody': _json_body({
                'product_id': {'type': 'string', 'description': 'Product ID'},
                'quantity': {'type': 'integer', 'description': 'Quantity', 'example': 1}
            }, ['product_id', 'quantity'])
        },
    ],
}

def get_bundled_endpoints() -> Dict[str, List[Dict[str, Any]]]:
    """Deep copy of the bundled catalog, safe to mutate"""
    return copy.deepcopy(BUNDLED_ENDPOINTS)
