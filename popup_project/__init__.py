import pymysql

# MySQL deployments go through PyMySQL in place of mysqlclient.
pymysql.install_as_MySQLdb()

import MySQLdb

# Django refuses driver versions below the mysqlclient it was built against.
if MySQLdb.version_info < (2, 2, 1):
    MySQLdb.version_info = (2, 2, 1, 'final', 0)
