"""
GitHub API
URL building and request headers for GitHub-hosted extension repositories
"""

from urllib.parse import urlparse

DEFAULT_BRANCHES = ('main', 'master')
USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36'


class GitHubRepo:
    def __init__(self, repo_url):
        """Parse a GitHub repository URL.

        Args:
            repo_url: str - e.g. https://github.com/owner/repo(.git)

        Raises:
            ValueError - if owner and repository cannot be determined
        """
        parsed = urlparse((repo_url or '').strip())
        path_parts = [p for p in parsed.path.strip('/').split('/') if p]
        if len(path_parts) < 2:
            raise ValueError(f'Not a repository URL: {repo_url!r}')

        self.owner = path_parts[0]
        self.name = path_parts[1][:-4] if path_parts[1].endswith('.git') else path_parts[1]
        self.host = parsed.netloc or 'github.com'
        self.web_url = f"{parsed.scheme or 'https'}://{self.host}/{self.owner}/{self.name}"

    def __repr__(self):
        return f'GitHubRepo({self.owner}/{self.name})'

    def tree_url(self, branch):
        return f"https://api.github.com/repos/{self.owner}/{self.name}/git/trees/{branch}?recursive=1"

    def raw_file_url(self, path, branch):
        return f"https://raw.githubusercontent.com/{self.owner}/{self.name}/{branch}/{path}"

    def archive_url(self, branch):
        return f"{self.web_url}/archive/refs/heads/{branch}.zip"

    def browse_url(self, branch, folder):
        return f"{self.web_url}/tree/{branch}/{folder}"


def build_headers(token=None, accept='*/*'):
    headers = {'User-Agent': USER_AGENT, 'Accept': accept}
    if token:
        headers['Authorization'] = f'token {token}'
    return headers
