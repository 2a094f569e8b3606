class Timeout:
    TIMEOUT_4SEC: int = 4
    TIMEOUT_15_SEC: int = 15
    TIMEOUT_30SEC: int = 30
    TIMEOUT_1MIN: int = 60
    TIMEOUT_2MIN: int = 2 * TIMEOUT_1MIN
    TIMEOUT_5MIN: int = 5 * TIMEOUT_1MIN


class ContainerState:
    CREATED: str = "CONTAINER_CREATED"
    RUNNING: str = "CONTAINER_RUNNING"
    EXITED: str = "CONTAINER_EXITED"
    UNKNOWN: str = "CONTAINER_UNKNOWN"


class Labels:
    class Sandbox:
        TEST: dict[str, str] = {"foo": "bar"}  # noqa: RUF012


class CriDefaults:
    CRICTL_PATH: str = "crictl"
    SANDBOX_NAMESPACE: str = "cri-image-tests"
    DEFAULT_ATTEMPT: int = 0
    DEFAULT_TAG: str = "latest"
    SANDBOX_NAME_PREFIX: str = "sandbox-for-create-container"
    STRESS_COMMAND: tuple[str, ...] = ("ls", "/")


class TestImages:
    __test__ = False
    WITH_TAG: str = "gcr.io/cri-tools/test-image-tag:test"
    WITHOUT_TAG: str = "gcr.io/cri-tools/test-image-latest"
    WITH_DIGEST: str = (
        "gcr.io/cri-tools/test-image-digest@sha256:9179135b4b4cc5a8721e09379244807553c318d92fa3111a65133241551ca343"
    )
    USER_UID: str = "gcr.io/cri-tools/test-image-user-uid"
    USER_USERNAME: str = "gcr.io/cri-tools/test-image-user-username"
    USER_UID_GROUP: str = "gcr.io/cri-tools/test-image-user-uid-group"
    USER_USERNAME_GROUP: str = "gcr.io/cri-tools/test-image-user-username-group"
    DIFFERENT_TAG_DIFFERENT_IMAGE: tuple[str, ...] = (
        "gcr.io/cri-tools/test-image-1:latest",
        "gcr.io/cri-tools/test-image-2:latest",
        "gcr.io/cri-tools/test-image-3:latest",
    )
    DIFFERENT_TAG_SAME_IMAGE: tuple[str, ...] = (
        "gcr.io/cri-tools/test-image-tags:1",
        "gcr.io/cri-tools/test-image-tags:2",
        "gcr.io/cri-tools/test-image-tags:3",
    )


class ImageUser:
    UID: int = 1002
    USERNAME: str = "www-data"
    UID_GROUP: int = 1003
    USERNAME_GROUP: str = "www-data"


# Public images of mixed size and pull latency, pulled in parallel by the stress test.
# Includes repositories Docker Hub has since deprecated; their pulls fail as separate pipelines.
STRESS_TEST_IMAGES: tuple[str, ...] = (
    "wordpress",
    "mongo",
    "ghost",
    "docker",
    "rabbitmq",
    "perl",
    "rocket.chat",
    "elixir",
    "node",
    "opensuse",
    "mariadb",
    "memcached",
    "hylang",
    "haproxy",
    "erlang",
    "maven",
    "drupal",
    "websphere-liberty",
    "open-liberty",
    "adoptopenjdk",
    "ibmjava",
    "gazebo",
    "solr",
    "tomee",
    "pypy",
    "zookeeper",
    "tomcat",
    "sonarqube",
    "rapidoid",
    "nuxeo",
    "orientdb",
    "gradle",
    "jruby",
    "groovy",
    "jetty",
    "lightstreamer",
    "flink",
    "kaazing-gateway",
    "clojure",
    "openjdk",
    "express-gateway",
    "arangodb",
    "ros",
    "xwiki",
    "teamspeak",
    "percona",
    "crate",
    "alt",
    "telegraf",
    "influxdb",
    "kapacitor",
    "chronograf",
    "rust",
    "consul",
    "swipl",
    "photon",
    "amazonlinux",
    "amazoncorretto",
    "logstash:7.1.0",
    "kibana:7.1.0",
    "elasticsearch:7.1.0",
    "python",
    "julia",
    "golang",
    "sourcemage",
    "mageia",
    "haskell",
    "nextcloud",
    "ruby",
    "redis",
    "geonetwork",
    "buildpack-deps",
    "swift",
    "bonita",
    "ubuntu",
    "thrift",
    "silverpeas",
    "php-zendserver",
    "neurodebian",
    "couchbase",
    "storm",
    "clearlinux",
    "yourls",
    "joomla",
    "postfixadmin",
    "matomo",
    "adminer",
    "convertigo",
    "mongo-express",
    "composer",
    "postgres",
    "bash",
    "php",
    "httpd",
    "spiped",
    "nginx",
    "fluentd",
    "alpine",
    "haxe",
    "neo4j",
)
