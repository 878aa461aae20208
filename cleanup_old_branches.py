#!/usr/bin/env python3
"""
Old Pull Request and Branch Cleanup

This script performs scheduled repository hygiene on a GitHub repository:
- Closes open pull requests opened by a bot account before the cutoff date,
  deleting their head branch
- Deletes remote branches whose last commit is older than the cutoff,
  in batches of at most 30 branches per push

In dry-run mode nothing is closed or deleted; the equivalent commands are
written to standard output or to a file instead.

Usage:
    cleanup_old_branches.py                  # run for real (CI)
    cleanup_old_branches.py --dry-run        # echo destructive commands to stdout
    cleanup_old_branches.py --dry-run FILE   # echo destructive commands to FILE
"""

import argparse
import logging
import os
import re
import shlex
import subprocess
import sys
from datetime import date, datetime, time, timedelta, timezone
from itertools import islice
from typing import Callable, List, Optional
from urllib.parse import urlsplit

import yaml
from github import Auth, Github, GithubException
from jinja2 import Template


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


DEFAULT_CUTOFF_DAYS = 7
# HEAD is refs/remotes/<remote>/HEAD (symbolic ref); it must never reach git push --delete
DEFAULT_EXCLUDED_BRANCHES = "main|master|integration-tests|HEAD"
DEFAULT_PR_AUTHOR = "konflux-ci-test-app[bot]"
DEFAULT_REMOTE = "origin"

# GitHub search never returns more than 1000 results for one query
PR_SEARCH_LIMIT = 1000
BATCH_SIZE = 30
SECONDS_PER_DAY = 86400

CI_GIT_USER_NAME = "github-actions[bot]"
CI_GIT_USER_EMAIL = "github-actions[bot]@users.noreply.github.com"

GITHUB_REMOTE_PATTERN = re.compile(
    r'github\.com[:/](?P<repo>[^/]+/[^/]+?)(?:\.git)?/?$'
)
REPOSITORY_PATTERN = re.compile(r'^[^/\s]+/[^/\s]+$')
# Userinfo of an authenticated URL, e.g. https://x-access-token:<token>@host
URL_CREDENTIALS_PATTERN = re.compile(r'(?P<scheme>[a-z][a-z0-9+.-]*://)[^/@\s]+@', re.IGNORECASE)

DEFAULT_SERVER_URL = "https://github.com"

# Environment variable -> configuration key
ENV_OVERRIDES = {
    'CUTOFF_DAYS': 'cutoff_days',
    'EXCLUDED_BRANCHES': 'excluded_branches',
    'PR_AUTHOR': 'pr_author',
    'GITHUB_REPOSITORY': 'repository',
    'REMOTE': 'remote',
    'PR_CLOSE_COMMENT': 'pr_close_comment',
}


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""


def redact_credentials(text: str) -> str:
    """Replace the userinfo part of any URL in text with '***'."""
    return URL_CREDENTIALS_PATTERN.sub(r'\g<scheme>***@', text)


class GitCommandError(Exception):
    """
    Raised when a git command exits with a non-zero status.

    Credentials embedded in URLs are redacted from the command and stderr.
    """

    def __init__(self, args: List[str], returncode: int, stderr: str):
        self.command = ['git'] + [redact_credentials(str(arg)) for arg in args]
        self.returncode = returncode
        self.stderr = redact_credentials(stderr)
        super().__init__(
            f"{' '.join(self.command)} failed with exit code {returncode}: {self.stderr}"
        )


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    ``--dry-run`` optionally takes a file path; any unrecognized argument
    makes argparse exit with a usage error.
    """
    parser = argparse.ArgumentParser(
        description='Close old pull requests from a bot account and delete '
                    'remote branches older than the cutoff.'
    )
    parser.add_argument(
        '--dry-run',
        nargs='?',
        const='',
        default=None,
        metavar='FILE',
        help='Echo destructive commands instead of running them, '
             'to stdout or appended to FILE (truncated at start)'
    )
    parser.add_argument(
        '-c', '--config',
        default=None,
        help='Optional YAML configuration file; environment variables take precedence'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )
    return parser.parse_args(argv)


def validate_config(config: dict) -> None:
    """
    Validate and normalize the effective configuration in place.

    Args:
        config: Configuration dictionary to validate

    Raises:
        ConfigurationError: If a value is missing or invalid
    """
    try:
        cutoff_days = int(config.get('cutoff_days', DEFAULT_CUTOFF_DAYS))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"cutoff_days must be an integer, got: {config.get('cutoff_days')!r}"
        ) from e
    if cutoff_days < 0:
        raise ConfigurationError(f"cutoff_days must be >= 0, got: {cutoff_days}")
    config['cutoff_days'] = cutoff_days

    # YAML may list the excluded branches instead of giving an alternation
    excluded_branches = config.get('excluded_branches')
    if isinstance(excluded_branches, list):
        if not all(isinstance(name, str) for name in excluded_branches):
            raise ConfigurationError(
                f"excluded_branches entries must be strings, got: {excluded_branches!r}"
            )
        config['excluded_branches'] = '|'.join(excluded_branches)
    elif not isinstance(excluded_branches, str):
        raise ConfigurationError(
            f"excluded_branches must be a pattern or a list of names, got: {excluded_branches!r}"
        )

    for key in ('remote', 'pr_author', 'repository'):
        value = config.get(key)
        if value is not None and not isinstance(value, str):
            raise ConfigurationError(f"{key} must be a string, got: {value!r}")

    comment = config.get('pr_close_comment')
    if comment is not None and not isinstance(comment, str):
        raise ConfigurationError(f"pr_close_comment must be a string, got: {comment!r}")

    try:
        compile_exclusion_pattern(config.get('excluded_branches', ''))
    except re.error as e:
        raise ConfigurationError(
            f"Invalid excluded_branches pattern {config.get('excluded_branches')!r}: {e}"
        ) from e

    if not config.get('remote'):
        raise ConfigurationError("remote must not be empty")

    if not config.get('pr_author'):
        raise ConfigurationError("pr_author must not be empty")

    repository = config.get('repository')
    if not repository or not REPOSITORY_PATTERN.match(repository):
        raise ConfigurationError(
            f"repository must be in 'owner/name' format, got: {repository!r}"
        )


def load_config(config_path: str) -> dict:
    """Load configuration values from a YAML file (not yet validated)."""
    with open(config_path, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f) or {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration file {config_path} must contain a mapping")
    return config


def detect_repository() -> str:
    """
    Detect the ``owner/name`` repository from the ``origin`` remote URL.

    Returns:
        Repository identifier in "owner/name" format

    Raises:
        ConfigurationError: If the remote is missing or not a GitHub URL
    """
    try:
        remote_url = run_git(['remote', 'get-url', 'origin']).strip()
    except (GitCommandError, OSError) as e:
        logger.debug(f"Could not read origin remote URL: {e}")
        remote_url = ''

    match = GITHUB_REMOTE_PATTERN.search(remote_url)
    if not match:
        raise ConfigurationError(
            "GITHUB_REPOSITORY not set and could not detect from git remote"
        )
    return match.group('repo')


def resolve_config(
    args: argparse.Namespace,
    environ: Optional[dict] = None
) -> dict:
    """
    Build the effective configuration.

    Precedence: built-in defaults, then the optional YAML file, then
    environment variables.

    Args:
        args: Parsed command-line arguments
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated configuration dictionary

    Raises:
        ConfigurationError: If the configuration is invalid or the
            repository cannot be determined
    """
    if environ is None:
        environ = os.environ

    config = {
        'cutoff_days': DEFAULT_CUTOFF_DAYS,
        'excluded_branches': DEFAULT_EXCLUDED_BRANCHES,
        'pr_author': DEFAULT_PR_AUTHOR,
        'repository': None,
        'remote': DEFAULT_REMOTE,
        'pr_close_comment': None,
    }
    if args.config:
        config.update(load_config(args.config))

    github_config = dict(config.get('github') or {})
    config['github'] = github_config

    for env_name, key in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            config[key] = value

    token = environ.get('GITHUB_TOKEN') or environ.get('GH_TOKEN')
    if token:
        github_config['token'] = token
    if environ.get('GITHUB_API_URL'):
        github_config['api_url'] = environ['GITHUB_API_URL']
    if environ.get('GITHUB_SERVER_URL'):
        github_config['server_url'] = environ['GITHUB_SERVER_URL']

    if not config.get('repository'):
        config['repository'] = detect_repository()
        logger.info(f"Using GITHUB_REPOSITORY={config['repository']} (from git remote)")

    config['ci'] = bool(environ.get('GITHUB_ACTIONS'))
    config['dry_run'] = args.dry_run is not None
    config['dry_run_file'] = args.dry_run or None

    validate_config(config)
    return config


def compute_cutoff_date(cutoff_days: int, now: Optional[datetime] = None) -> date:
    """Return the calendar date (UTC) that lies cutoff_days before now."""
    if now is None:
        now = datetime.now(timezone.utc)
    return (now.astimezone(timezone.utc) - timedelta(days=cutoff_days)).date()


def compile_exclusion_pattern(pattern: str) -> re.Pattern:
    """Compile the excluded-branch alternation for exact (fullmatch) matching."""
    return re.compile(f"(?:{pattern})")


def parse_commit_date(date_str: str) -> datetime:
    """
    Parse a commit date string into a datetime object.

    Handles the ISO 8601 variants git emits (strict and non-strict).

    Args:
        date_str: Date string in ISO 8601 format

    Returns:
        datetime object with timezone info

    Raises:
        ValueError: If the date cannot be parsed
    """
    date_str = date_str.strip()
    # Handle 'Z' suffix (UTC)
    if date_str.endswith('Z'):
        date_str = date_str[:-1] + '+00:00'

    try:
        parsed = datetime.fromisoformat(date_str)
    except ValueError:
        formats = [
            '%Y-%m-%dT%H:%M:%S%z',
            '%Y-%m-%d %H:%M:%S %z',
            '%Y-%m-%d %H:%M:%S%z',
        ]
        for fmt in formats:
            try:
                parsed = datetime.strptime(date_str, fmt)
                break
            except ValueError:
                continue
        else:
            raise ValueError(f"Unable to parse date: {date_str}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# -----------------------------------------------------------------------------
# Dry-run sink
# -----------------------------------------------------------------------------

class DryRunSink:
    """
    Either performs a destructive action or records its command line.

    In dry-run mode every submitted command is written as one line, to
    stdout or appended to ``output_file``. The file is truncated once,
    when the sink is created.
    """

    def __init__(self, dry_run: bool = False, output_file: Optional[str] = None):
        self.dry_run = dry_run
        self.output_file = output_file if dry_run else None
        self.recorded = 0
        self.executed = 0
        self.failed = 0

        if self.output_file:
            with open(self.output_file, 'w', encoding='utf-8'):
                pass

    def record(self, command: str) -> None:
        if self.output_file:
            with open(self.output_file, 'a', encoding='utf-8') as f:
                f.write(command + '\n')
        else:
            sys.stdout.write(command + '\n')
            sys.stdout.flush()
        self.recorded += 1

    def submit(self, command: str, action: Callable[[], object]) -> bool:
        """
        Run ``action`` or, in dry-run mode, record ``command``.

        Failures of the action are logged and absorbed so that one bad
        PR or branch does not stop the rest of the cleanup.

        Returns:
            True if the command was recorded or the action succeeded
        """
        if self.dry_run:
            self.record(command)
            return True

        try:
            action()
        except (GithubException, GitCommandError, OSError) as e:
            logger.error(f"Command failed: {command}: {e}")
            self.failed += 1
            return False

        self.executed += 1
        return True


# -----------------------------------------------------------------------------
# GitHub
# -----------------------------------------------------------------------------

def create_github_client(config: dict) -> Github:
    """
    Create a GitHub client from the 'github' section of the configuration.

    Without a token the client is anonymous, which is enough for searching
    public repositories in dry-run mode but not for closing pull requests.
    """
    github_config = config.get('github') or {}
    token = github_config.get('token')
    api_url = github_config.get('api_url')

    kwargs = {}
    if token:
        kwargs['auth'] = Auth.Token(token)
    elif not config.get('dry_run'):
        logger.warning("No GITHUB_TOKEN set; closing pull requests will fail")
    if api_url:
        kwargs['base_url'] = api_url
    return Github(**kwargs)


def format_search_author(author: str) -> str:
    """Translate a bot login ("name[bot]") into search syntax ("app/name")."""
    if author.endswith('[bot]'):
        return f"app/{author[:-len('[bot]')]}"
    return author


def search_stale_pull_requests(
    gh: Github,
    repo_name: str,
    author: str,
    cutoff_date: date,
    limit: int = PR_SEARCH_LIMIT
) -> list:
    """
    Find open pull requests by author created before the cutoff date.

    The search is bounded to ``limit`` results; a failing search is logged
    and treated as "no pull requests found".

    Args:
        gh: GitHub client
        repo_name: Repository name in "owner/repo" format
        author: Login of the pull request author
        cutoff_date: PRs created before this date (00:00 UTC) qualify
        limit: Maximum number of search results considered

    Returns:
        List of pull request information dictionaries, in server order
    """
    cutoff = datetime.combine(cutoff_date, time.min, tzinfo=timezone.utc)
    query = f"repo:{repo_name} is:pr is:open author:{format_search_author(author)}"
    logger.debug(f"Searching pull requests: {query}")

    stale_prs = []
    try:
        results = gh.search_issues(query=query)
        total = results.totalCount
        if total > limit:
            logger.warning(
                f"Search returned {total} open PRs by {author}; "
                f"only the first {limit} are considered this run"
            )

        for issue in islice(results, limit):
            created_at = issue.created_at
            if created_at.tzinfo is None:
                created_at = created_at.replace(tzinfo=timezone.utc)
            if created_at < cutoff:
                stale_prs.append({
                    'number': issue.number,
                    'title': issue.title,
                    'author': author,
                    'created_at': created_at,
                })
    except (GithubException, OSError) as e:
        logger.warning(f"Pull request search failed, treating as no PRs found: {e}")
        return []

    return stale_prs


def render_close_comment(template: Optional[str], pr_number: int, config: dict,
                         cutoff_date: date) -> Optional[str]:
    """Render the optional close comment template for a pull request."""
    if not template:
        return None
    return Template(template).render(
        pr_number=pr_number,
        cutoff_days=config['cutoff_days'],
        date_limit=cutoff_date.isoformat(),
    ).strip()


def format_close_command(repo_name: str, pr_number: int,
                         comment: Optional[str] = None) -> str:
    command = f"gh pr close {pr_number} --repo {repo_name} --delete-branch"
    if comment:
        # Recorded commands are one per line; the posted comment keeps its newlines
        command += f" --comment {shlex.quote(' '.join(comment.split()))}"
    return command


def _delete_head_branch(repo, pr) -> None:
    head = pr.head
    if head.repo is None or head.repo.full_name != repo.full_name:
        logger.info(
            f"Head branch of PR #{pr.number} lives in another repository; not deleting it"
        )
        return

    try:
        repo.get_git_ref(f"heads/{head.ref}").delete()
        logger.info(f"Deleted branch '{head.ref}' of PR #{pr.number}")
    except GithubException as e:
        if e.status in (404, 422):
            logger.info(f"Branch '{head.ref}' of PR #{pr.number} is already deleted")
            return
        raise


def close_pull_request(
    gh: Github,
    repo_name: str,
    pr_number: int,
    delete_branch: bool = True,
    comment: Optional[str] = None
) -> None:
    """
    Close a pull request and delete its head branch.

    Closing an already-closed PR or deleting an already-deleted branch is
    not an error.

    Raises:
        GithubException: If the GitHub API rejects the request
    """
    repo = gh.get_repo(repo_name)
    pr = repo.get_pull(pr_number)

    if pr.state == 'closed':
        logger.info(f"PR #{pr_number} is already closed")
    else:
        if comment:
            pr.create_issue_comment(comment)
        pr.edit(state='closed')
        logger.info(f"Closed PR #{pr_number} in repo {repo_name}")

    if delete_branch:
        _delete_head_branch(repo, pr)


def close_stale_pull_requests(
    gh: Github,
    config: dict,
    sink: DryRunSink,
    cutoff_date: date
) -> dict:
    """
    Close open pull requests by the configured author created before the cutoff.

    Returns:
        Summary with counts of PRs found, closed and failed
    """
    repo_name = config['repository']
    author = config['pr_author']

    summary = {'prs_found': 0, 'prs_closed': 0, 'prs_failed': 0}

    logger.info(f"Searching for open PRs by {author} created before {cutoff_date}...")
    stale_prs = search_stale_pull_requests(gh, repo_name, author, cutoff_date)
    summary['prs_found'] = len(stale_prs)

    if not stale_prs:
        logger.info("No PRs to close.")
        return summary

    for pr in stale_prs:
        number = pr['number']
        comment = render_close_comment(
            config.get('pr_close_comment'), number, config, cutoff_date
        )
        logger.info(f"Would close PR #{number} (created {pr['created_at']:%Y-%m-%d})")
        ok = sink.submit(
            format_close_command(repo_name, number, comment),
            lambda number=number, comment=comment: close_pull_request(
                gh, repo_name, number, delete_branch=True, comment=comment
            ),
        )
        if ok:
            summary['prs_closed'] += 1
        else:
            summary['prs_failed'] += 1

    return summary


# -----------------------------------------------------------------------------
# Git
# -----------------------------------------------------------------------------

def run_git(args: List[str], cwd: Optional[str] = None) -> str:
    """
    Run a git command and return its standard output.

    Raises:
        GitCommandError: If git exits with a non-zero status
    """
    proc = subprocess.run(
        ['git'] + list(args),
        cwd=cwd,
        capture_output=True,
        text=True,
        check=False,
    )
    if proc.returncode != 0:
        raise GitCommandError(args, proc.returncode, proc.stderr.strip())
    return proc.stdout


def fetch_remote(remote: str) -> bool:
    """Fetch from the remote, pruning refs deleted on the server. Best-effort."""
    logger.info(
        f"Fetching from remote '{remote}' "
        f"(this may take a while for repos with many branches)..."
    )
    try:
        run_git(['fetch', remote, '--prune'])
    except (GitCommandError, OSError) as e:
        logger.warning(f"Fetch from '{remote}' failed, continuing with cached refs: {e}")
        return False
    return True


def configure_ci_push_access(
    remote: str,
    repository: str,
    token: Optional[str],
    server_url: str = DEFAULT_SERVER_URL
) -> None:
    """
    Set the bot identity and embed the token into the remote URL.

    Only called on ephemeral CI runners; a developer's git config and remote
    URL are never touched.

    Args:
        remote: Remote whose URL is rewritten
        repository: Repository name in "owner/repo" format
        token: Token used for pushing; the URL is left alone without one
        server_url: Web URL of the GitHub server (GITHUB_SERVER_URL)

    Raises:
        GitCommandError: If a git command fails (credentials redacted)
    """
    run_git(['config', 'user.name', CI_GIT_USER_NAME])
    run_git(['config', 'user.email', CI_GIT_USER_EMAIL])
    if token:
        parts = urlsplit(server_url or DEFAULT_SERVER_URL)
        scheme = parts.scheme or 'https'
        host = parts.netloc or parts.path
        run_git([
            'remote', 'set-url', remote,
            f"{scheme}://x-access-token:{token}@{host}/{repository}.git",
        ])


def list_remote_branches(remote: str) -> list:
    """
    List remote-tracking refs of a remote, oldest commit first.

    Fields are tab separated; a tab cannot occur in a ref name or in the
    date with its time-zone offset. Symbolic refs (``<remote>/HEAD``) are
    skipped.

    Returns:
        List of dicts with 'branch_name', 'ref' and 'last_commit_date'
    """
    prefix = f"refs/remotes/{remote}/"
    output = run_git([
        'for-each-ref',
        '--sort=committerdate',
        '--format=%(committerdate:iso8601-strict)%09%(refname)%09%(symref)',
        prefix,
    ])

    branches = []
    for line in output.splitlines():
        if not line.strip():
            continue
        fields = line.split('\t')
        if len(fields) < 2 or not fields[1]:
            continue
        date_str, ref = fields[0], fields[1]
        symref = fields[2] if len(fields) > 2 else ''
        if symref:
            logger.debug(f"Skipping symbolic ref {ref} -> {symref}")
            continue

        branch_name = ref[len(prefix):] if ref.startswith(prefix) else ref
        try:
            commit_date = parse_commit_date(date_str)
        except ValueError as e:
            logger.warning(f"Could not parse commit date for branch {branch_name}: {e}. Skipping.")
            continue

        branches.append({
            'branch_name': branch_name,
            'ref': ref,
            'last_commit_date': commit_date,
        })
    return branches


def format_push_delete_command(remote: str, branch_names: List[str]) -> str:
    return f"git push {remote} --delete {' '.join(branch_names)}"


def delete_remote_branches(remote: str, branch_names: List[str]) -> None:
    """Delete branches on the remote with a single push."""
    run_git(['push', remote, '--delete'] + list(branch_names))
    logger.info(f"Deleted {len(branch_names)} branch(es) from '{remote}'")


class DeletionBatch:
    """
    Accumulates branch names and flushes them in groups of at most ``size``.

    ``flush_fn`` receives the list of names for each batch.
    """

    def __init__(self, flush_fn: Callable[[List[str]], object], size: int = BATCH_SIZE):
        if size < 1:
            raise ValueError("batch size must be at least 1")
        self.flush_fn = flush_fn
        self.size = size
        self.pending = []
        self.batches = 0
        self.total = 0

    def add(self, branch_name: str) -> None:
        self.pending.append(branch_name)
        self.total += 1
        if len(self.pending) >= self.size:
            self.flush()

    def flush(self) -> None:
        if not self.pending:
            return
        names, self.pending = self.pending, []
        self.batches += 1
        self.flush_fn(names)


def find_stale_branches(
    branches: list,
    excluded: re.Pattern,
    cutoff_days: int,
    now: Optional[datetime] = None
):
    """
    Yield branches that are not excluded and at least cutoff_days old.

    Each yielded dict gains an 'age_days' key (whole days, floored).
    """
    if now is None:
        now = datetime.now(timezone.utc)

    for branch in branches:
        name = branch['branch_name']
        if excluded.fullmatch(name):
            logger.debug(f"Skipping excluded branch: {name}")
            continue

        age_seconds = (now - branch['last_commit_date']).total_seconds()
        age_days = int(age_seconds // SECONDS_PER_DAY)
        if age_days >= cutoff_days:
            yield dict(branch, age_days=age_days)


def delete_stale_branches(
    config: dict,
    sink: DryRunSink,
    now: Optional[datetime] = None
) -> dict:
    """
    Delete remote branches older than the cutoff that are not excluded.

    Returns:
        Summary with counts of branches scanned, deleted and batches pushed
    """
    remote = config['remote']
    cutoff_days = config['cutoff_days']
    excluded = compile_exclusion_pattern(config['excluded_branches'])

    summary = {'branches_scanned': 0, 'branches_stale': 0, 'batches': 0, 'batches_failed': 0}

    if not config.get('ci'):
        fetch_remote(remote)

    if config.get('ci') and not config.get('dry_run'):
        github_config = config.get('github') or {}
        try:
            configure_ci_push_access(
                remote,
                config['repository'],
                github_config.get('token'),
                github_config.get('server_url') or DEFAULT_SERVER_URL,
            )
        except (GitCommandError, OSError) as e:
            logger.warning(
                f"Could not set up push access for '{remote}', "
                f"continuing with existing credentials: {e}"
            )

    logger.info(f"Identifying stale branches (refs/remotes/{remote}/)...")
    try:
        branches = list_remote_branches(remote)
    except (GitCommandError, OSError) as e:
        logger.error(f"Could not list branches of remote '{remote}': {e}")
        return summary
    summary['branches_scanned'] = len(branches)

    def flush(names: List[str]) -> None:
        ok = sink.submit(
            format_push_delete_command(remote, names),
            lambda: delete_remote_branches(remote, names),
        )
        if not ok:
            summary['batches_failed'] += 1

    batch = DeletionBatch(flush)
    for branch in find_stale_branches(branches, excluded, cutoff_days, now=now):
        logger.info(
            f"Would delete branch: {branch['branch_name']} ({branch['age_days']} days old)"
        )
        batch.add(branch['branch_name'])
    batch.flush()

    summary['branches_stale'] = batch.total
    summary['batches'] = batch.batches
    return summary


# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------

def run_cleanup(config: dict, gh: Optional[Github] = None,
                now: Optional[datetime] = None) -> dict:
    """Run the pull request stage and then the branch stage."""
    if now is None:
        now = datetime.now(timezone.utc)
    cutoff_date = compute_cutoff_date(config['cutoff_days'], now=now)

    if config['dry_run']:
        logger.info(
            "DRY RUN: destructive commands will be echoed only "
            "(no PRs closed, no branches deleted)"
        )
        if config.get('dry_run_file'):
            logger.info(f"Output file: {config['dry_run_file']}")

    sink = DryRunSink(config['dry_run'], config.get('dry_run_file'))
    if gh is None:
        gh = create_github_client(config)

    summary = {}
    summary.update(close_stale_pull_requests(gh, config, sink, cutoff_date))
    summary.update(delete_stale_branches(config, sink, now=now))
    summary['commands_recorded'] = sink.recorded

    if config.get('dry_run_file'):
        logger.info(f"Dry-run commands written to: {config['dry_run_file']}")
    return summary


def main(argv: Optional[List[str]] = None) -> Optional[int]:
    """Main entry point for the script."""
    args = parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = resolve_config(args)
    except FileNotFoundError:
        logger.error(f"Configuration file not found: {args.config}")
        return 1
    except yaml.YAMLError as e:
        logger.error(f"Invalid YAML in configuration file: {e}")
        return 1
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    summary = run_cleanup(config)

    logger.info("=" * 50)
    logger.info("Cleanup Summary" + (" (dry run)" if config['dry_run'] else ""))
    logger.info("=" * 50)
    logger.info(f"Repository: {config['repository']}")
    logger.info(f"Cutoff: {config['cutoff_days']} days")
    logger.info(f"Old PRs found: {summary['prs_found']}")
    if config['dry_run']:
        logger.info(f"PR close commands recorded: {summary['prs_closed']}")
    else:
        logger.info(f"PRs closed: {summary['prs_closed']}")
    logger.info(f"PRs failed: {summary['prs_failed']}")
    logger.info(f"Remote branches scanned: {summary['branches_scanned']}")
    logger.info(f"Stale branches: {summary['branches_stale']}")
    logger.info(f"Delete batches: {summary['batches']} ({summary['batches_failed']} failed)")

    return 0


if __name__ == '__main__':
    sys.exit(main())
