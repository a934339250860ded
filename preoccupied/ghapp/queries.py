"""
GraphQL query bodies used by the GitHub app client. The branch and
commit queries each come in two flavors; the one without changedFiles
is the fallback for when GitHub times out computing that field.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""


VIEWER_REPOSITORY_COUNT_QUERY = """
query {
  viewer {
    repositories {
      totalCount
    }
  }
}
"""


_COMMIT_FIELDS = """
author {
  avatarUrl
  email
  name
  user {
    url
  }
}
authoredDate
message
oid
url
"""


def _branches_query(commit_fields: str) -> str:
    return """
query ($owner: String!, $repo: String!, $per_page: Int!, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    refs(first: $per_page, refPrefix: "refs/heads/", after: $cursor) {
      edges {
        cursor
        node {
          name
          associatedPullRequests(first: 1) {
            nodes {
              title
            }
          }
          target {
            ... on Commit {
              %s
              history(first: 50) {
                nodes {
                  %s
                }
              }
            }
          }
        }
      }
    }
  }
}
""" % (commit_fields, commit_fields)


def _commits_query(commit_fields: str) -> str:
    return """
query ($owner: String!, $repo: String!, $per_page: Int = 20, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    defaultBranchRef {
      target {
        ... on Commit {
          history(first: $per_page, after: $cursor) {
            edges {
              cursor
              node {
                %s
              }
            }
          }
        }
      }
    }
  }
}
""" % commit_fields


BRANCHES_QUERY_WITH_CHANGED_FILES = _branches_query(_COMMIT_FIELDS + 'changedFiles\n')
BRANCHES_QUERY_WITHOUT_CHANGED_FILES = _branches_query(_COMMIT_FIELDS)

COMMITS_QUERY_WITH_CHANGED_FILES = _commits_query(_COMMIT_FIELDS + 'changedFiles\n')
COMMITS_QUERY_WITHOUT_CHANGED_FILES = _commits_query(_COMMIT_FIELDS)


# The end.
