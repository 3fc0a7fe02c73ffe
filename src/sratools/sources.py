"""
Data source lookup for sratools.

Asks the SRA Data Locator (SDL) where a run can be fetched from and turns
each location into a DataSource: the environment variables a tool needs to
read the run from that place. Sources come back in SDL order, which is the
order they are tried in.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

import requests
from pydantic import BaseModel

from sratools import __version__
from sratools.accession import is_readable_path
from sratools.config import DriverConfig, InvocationContext

# Every variable a source may set; unset ones are cleared so a previous
# source cannot leak into the next attempt.
SOURCE_ENV_VARS = (
    "VDB_LOCAL_URL",
    "VDB_REMOTE_URL",
    "VDB_REMOTE_VDBCACHE",
    "VDB_REMOTE_NEED_CE",
    "VDB_REMOTE_NEED_PMT",
    "VDB_REMOTE_SIZE",
)
CE_TOKEN_VAR = "VDB_CE_TOKEN"


class DataSource(BaseModel):
    """One place a run's data can be fetched from."""
    service: str
    environment: Dict[str, str] = {}
    need_ce: bool = False
    need_pmt: bool = False

    def set_environment(self, environ: Dict[str, str]) -> None:
        """Install this source's variables into environ."""
        for name in SOURCE_ENV_VARS:
            if name in self.environment:
                environ[name] = self.environment[name]
            else:
                environ.pop(name, None)


class DataSources:
    """Ordered candidate sources for one run."""

    def __init__(self, sources: Optional[List[DataSource]] = None, ce_token: Optional[str] = None) -> None:
        self.sources = list(sources or [])
        self.ce_token = ce_token

    def __iter__(self) -> Iterator[DataSource]:
        return iter(self.sources)

    def __len__(self) -> int:
        return len(self.sources)

    def __bool__(self) -> bool:
        return bool(self.sources)

    def set_ce_token_env_var(self, environ: Dict[str, str]) -> None:
        """Install the CE token if any source needs one."""
        if self.ce_token and any(source.need_ce for source in self.sources):
            environ[CE_TOKEN_VAR] = self.ce_token


@dataclass
class SDLResponse:
    """Standardized response from the locator."""
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    status_code: Optional[int] = None


class SDLClient:
    """
    Client for the SRA Data Locator.

    One session per invocation; failures come back as an unsuccessful
    SDLResponse rather than an exception, since a run with no source is
    reported by the caller.
    """

    def __init__(self, config: Optional[DriverConfig] = None):
        self.config = config or DriverConfig.from_env()
        self.session = requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'User-Agent': f'sratools/{__version__}',
        })

    def _make_request(self, method: str, url: str, **kwargs) -> SDLResponse:
        """Make a request with error handling."""
        try:
            kwargs.setdefault('timeout', self.config.sdl_timeout)
            response = self.session.request(method, url, **kwargs)

            if response.status_code == 200:
                return SDLResponse(
                    success=True,
                    data=response.json(),
                    status_code=response.status_code,
                )

            error_msg = f"HTTP {response.status_code}"
            try:
                error_data = response.json()
                if isinstance(error_data, dict) and 'message' in error_data:
                    error_msg = error_data['message']
            except ValueError:
                error_msg = response.text or error_msg
            return SDLResponse(success=False, error=error_msg, status_code=response.status_code)

        except requests.exceptions.Timeout:
            return SDLResponse(success=False, error="Request timeout")
        except requests.exceptions.ConnectionError:
            return SDLResponse(success=False, error="Connection error")
        except requests.RequestException as e:
            return SDLResponse(success=False, error=str(e))
        except ValueError as e:
            return SDLResponse(success=False, error=f"Invalid response: {e}")

    def retrieve(self, accession: str, location: Optional[str] = None) -> SDLResponse:
        """Ask the locator where accession can be read from."""
        form = {
            'acc': accession,
            'accept-proto': self.config.accept_proto,
        }
        if location:
            form['location'] = location
        if self.config.ce_token:
            form['ident'] = self.config.ce_token
        return self._make_request('POST', f"{self.config.sdl_url}/retrieve", data=form)

    def data_sources(self, ctx: InvocationContext, run: str) -> DataSources:
        """Get the candidate sources for run, in the order to try them."""
        response = self.retrieve(run, ctx.location)
        if not response.success:
            ctx.log(1, f"data locator failed for {run}: {response.error}")
            return DataSources(ce_token=self.config.ce_token)

        sources = parse_sdl_result(response.data or {}, run)
        if not sources:
            ctx.log(1, f"data locator has no locations for {run}")
        return DataSources(sources, ce_token=self.config.ce_token)


def _location_key(location: Dict[str, Any]) -> Tuple[str, str]:
    return location.get('service', ''), location.get('region', '')


def _service_name(location: Dict[str, Any]) -> str:
    service, region = _location_key(location)
    return f"{service}.{region}" if region else service


def parse_sdl_result(data: Any, run: str) -> List[DataSource]:
    """
    Turn an SDL version 2 reply into DataSources.

    Only bundles for run with status 200 count. Each location of the "sra"
    file is one source; a "vdbcache" file at the same service and region is
    attached to it.
    """
    sources: List[DataSource] = []
    if not isinstance(data, dict):
        return sources
    for bundle in data.get('result', []):
        if not isinstance(bundle, dict):
            continue
        if bundle.get('bundle', run) != run or bundle.get('status') != 200:
            continue

        files = bundle.get('files', [])
        caches = {}
        for file_info in files:
            if file_info.get('type') == 'vdbcache':
                for location in file_info.get('locations', []):
                    caches[_location_key(location)] = location.get('link')

        for file_info in files:
            if file_info.get('type') != 'sra':
                continue
            for location in file_info.get('locations', []):
                link = location.get('link')
                if not link:
                    continue
                need_ce = bool(location.get('ceRequired', False))
                need_pmt = bool(location.get('payRequired', False))

                environment = {'VDB_REMOTE_URL': link}
                cache = caches.get(_location_key(location))
                if cache:
                    environment['VDB_REMOTE_VDBCACHE'] = cache
                if need_ce:
                    environment['VDB_REMOTE_NEED_CE'] = '1'
                if need_pmt:
                    environment['VDB_REMOTE_NEED_PMT'] = '1'
                if file_info.get('size') is not None:
                    environment['VDB_REMOTE_SIZE'] = str(file_info['size'])

                sources.append(DataSource(
                    service=_service_name(location),
                    environment=environment,
                    need_ce=need_ce,
                    need_pmt=need_pmt,
                ))
    return sources


def local_source(path: str) -> DataSource:
    """A source for a run that is a readable file on disk."""
    return DataSource(service="local", environment={'VDB_LOCAL_URL': path})


def data_sources(ctx: InvocationContext, run: str, client: Optional[SDLClient] = None) -> DataSources:
    """Candidate sources for run: the file itself if readable, else the locator's answer."""
    if is_readable_path(run):
        return DataSources([local_source(run)])
    client = client or get_sdl_client(ctx.config)
    return client.data_sources(ctx, run)


# Global instance for easy access
_sdl_client: Optional[SDLClient] = None


def get_sdl_client(config: Optional[DriverConfig] = None) -> SDLClient:
    """Get the global locator client instance."""
    global _sdl_client
    if _sdl_client is None:
        _sdl_client = SDLClient(config)
    return _sdl_client


def reset_sdl_client() -> None:
    """Reset the global locator client (useful for testing)."""
    global _sdl_client
    _sdl_client = None
