KILL_GRACE_PERIOD = 5.0
SPAWN_FAILURE_EXIT_CODE = 1

PORT_POLL_INTERVAL = 0.5
PORT_PROBE_TIMEOUT = 2.0
HEALTH_POLL_INTERVAL = 1.0
HEALTH_REQUEST_TIMEOUT = 3.0

HEALTH_ENDPOINTS = (
    '/health',
    '/api/health',
    '/healthz',
    '/api/healthz',
    '/',
)

COMMON_API_ENDPOINTS = (
    ('GET', '/api/health'),
    ('GET', '/api'),
    ('GET', '/api/v1'),
    ('GET', '/api/status'),
    ('GET', '/api/version'),
)

OPENAPI_REMOTE_PATHS = (
    '/openapi.json',
    '/api/openapi.json',
    '/swagger.json',
    '/api/swagger.json',
    '/docs/openapi.json',
)
OPENAPI_LOCAL_PATHS = (
    'openapi.json',
    'openapi.yaml',
    'swagger.json',
    'docs/openapi.json',
    'api/openapi.json',
)
OPENAPI_FETCH_TIMEOUT = 5.0
OPENAPI_METHODS = ('get', 'post', 'put', 'patch', 'delete')
MAX_OPENAPI_ENDPOINTS = 10

MAIN_CONTENT_SELECTOR = 'main, #root, #app, .app, [role="main"], body > div'

PRIMARY_ACTION_SELECTORS = (
    'button[type="submit"]',
    'button.primary',
    'button.btn-primary',
    '[data-testid="submit"]',
    '[data-testid="primary-action"]',
    'button:has-text("Login")',
    'button:has-text("登录")',
    'button:has-text("Sign")',
    'button:has-text("Start")',
    'button:has-text("开始")',
    'button:has-text("Create")',
    'button:has-text("创建")',
    'button:has-text("Search")',
    'button:has-text("搜索")',
    'button:has-text("Submit")',
    'button:has-text("提交")',
    'button:has-text("Go")',
    'button:has-text("Enter")',
)

NAV_LINK_SELECTORS = (
    'nav a',
    'header a',
    '[role="navigation"] a',
    '.nav a',
    '.navbar a',
    '.menu a',
    '.sidebar a',
)
MAX_NAV_LINKS = 3
MAX_CONSOLE_ERRORS_PER_FLOW = 3

CUSTOM_UI_TEST_DIRS = ('tests/ui', 'test/ui', 'e2e')
CUSTOM_UI_TEST_SUFFIXES = ('.spec.ts', '.spec.js')

VIEWPORT = {'width': 1280, 'height': 720}
USER_AGENT = 'probebox-ui/0.1'

PROJECT_CONFIG_FILES = (
    'evaluation.config.yml',
    'evaluation.config.yaml',
    'evaluation.config.json',
)
NODE_SCRIPT_PRIORITY = ('dev', 'start', 'serve', 'dev:server')
PYTHON_ENTRY_POINTS = ('app.py', 'main.py', 'server.py', 'run.py')

# extra lifetime granted to a launched process beyond the sum of phase timeouts
PROCESS_LIFETIME_BUFFER = 10.0
OUTPUT_TAIL_SIZE = 2000

# first dependency found wins
NODE_FRAMEWORKS = (
    ('next', 'nextjs'),
    ('vite', 'vite'),
    ('react-scripts', 'cra'),
    ('nuxt', 'nuxt'),
    ('@angular/core', 'angular'),
    ('express', 'express'),
)
# extra `npm run` arguments that pin the dev server to {port}, others read $PORT
NODE_PORT_ARGS = {
    'nextjs': ('--', '-p', '{port}'),
    'vite': ('--', '--host', '127.0.0.1', '--port', '{port}'),
    'nuxt': ('--', '--port', '{port}'),
}
DOCKER_COMPOSE_FILES = ('docker-compose.yml', 'docker-compose.yaml')
