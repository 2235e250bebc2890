OFFLINE_DB_NAME = 'letsboulder-offline'
OFFLINE_DB_VERSION = 1

OFFLINE_ASSETS_CACHE = 'letsboulder-offline-assets-v1'
OFFLINE_PAGES_CACHE = 'letsboulder-offline-pages-v1'

SCREENSHOT_WIDTH = 1200
SCREENSHOT_HEIGHT = 700

DEFAULT_ROUTE_COLOR = '#ff00ff'


def offline_crag_map_request_url(crag_id):
    return f'/__offline/crag/{crag_id}/map.png'
